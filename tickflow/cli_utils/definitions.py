"""Load workflow and transformer definitions from YAML files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field

from ..contracts import Transformer, WorkflowDefinition
from ..persistence import JobStore


class DefinitionsFile(BaseModel):
    """Top-level layout of a definitions file."""

    transformers: List[Transformer] = Field(default_factory=list)
    workflows: Dict[str, WorkflowDefinition] = Field(default_factory=dict)


def load_definitions(path: Path) -> DefinitionsFile:
    """Parse ``path``.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the YAML is invalid or does not match the layout.
    """
    with open(path) as f:
        try:
            data: Any = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return DefinitionsFile.model_validate(data)


async def register_definitions(store: JobStore, definitions: DefinitionsFile) -> None:
    """Write every transformer and workflow in ``definitions`` to ``store``."""
    for transformer in definitions.transformers:
        await store.save_transformer(transformer)
    for workflow_id, definition in definitions.workflows.items():
        await store.save_workflow(
            workflow_id, definition.model_dump(mode="json", exclude_none=True)
        )
