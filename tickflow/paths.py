"""Path expressions over JSON documents.

Expressions use JSONPath syntax as implemented by ``jsonpath-ng``'s extended
parser, e.g. ``$``, ``$.a.b``, ``$['a']``, ``$.items[0]``, ``$.items[1:3]``,
``$.items[*]``, ``$.*`` and ``$..name``. Every expression must start at the
root ``$``.

``evaluate`` always returns a list of matches; ``extract`` collapses that list
with the convention used when values are handed to executors or stored.
"""

from __future__ import annotations

import copy
from functools import lru_cache
from typing import Any, Mapping, Optional, Sequence, Union

from jsonpath_ng.exceptions import JSONPathError
from jsonpath_ng.ext import parse

from .constants import ROOT_PATH
from .errors import PathSyntaxError


class CompiledPath:
    """A parsed path expression that can be applied to many documents."""

    def __init__(self, expression: str) -> None:
        self.expression = expression
        self._path = parse(expression)

    def find(self, document: Any) -> list[Any]:
        try:
            matches = self._path.find(document)
        except (LookupError, TypeError):
            # an index applied to the wrong kind of node selects nothing
            return []
        return [copy.deepcopy(match.value) for match in matches]

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"CompiledPath({self.expression!r})"


@lru_cache(maxsize=256)
def compile_path(expression: str) -> CompiledPath:
    """Parse ``expression``, raising ``PathSyntaxError`` when malformed."""
    if not isinstance(expression, str):
        raise PathSyntaxError(repr(expression), "expression must be a string")
    if not expression.startswith(ROOT_PATH):
        raise PathSyntaxError(expression, "expression must start with '$'")
    try:
        return CompiledPath(expression)
    except JSONPathError as e:
        raise PathSyntaxError(expression, str(e)) from e


def evaluate(document: Any, expression: Optional[str] = ROOT_PATH) -> list[Any]:
    """Return every value in ``document`` matched by ``expression``.

    The result is always a list, even for a single match, and is empty when
    nothing matches. The input document is never mutated.
    """
    return compile_path(expression or ROOT_PATH).find(document)


def extract(document: Any, expression: Optional[str] = ROOT_PATH) -> Any:
    """Evaluate ``expression`` and collapse the matches.

    No match gives ``None``, a single match gives the value itself and several
    matches give the list.
    """
    matches = evaluate(document, expression)
    if not matches:
        return None
    if len(matches) == 1:
        return matches[0]
    return matches


def map_result(
    document: Any, output_map: Union[str, Mapping[str, str], None]
) -> Any:
    """Apply a workflow-level output map to ``document``.

    ``output_map`` is either a single path or a mapping of result keys to
    paths, e.g. ``{"text": "$.transcribe.text"}``.
    """
    if output_map is None:
        return copy.deepcopy(document)
    if isinstance(output_map, str):
        return extract(document, output_map)
    return {key: extract(document, path) for key, path in output_map.items()}


def validate_paths(expressions: Sequence[Optional[str]]) -> None:
    """Compile each non-empty expression so syntax errors surface early."""
    for expression in expressions:
        if expression:
            compile_path(expression)
