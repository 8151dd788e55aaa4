"""In-process executor backend."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from ..errors import ExecutorInvocationError, StepFailed
from .base import ExecutorBackend

logger = logging.getLogger(__name__)

ExecutorFunction = Callable[[dict], Union[Any, Awaitable[Any]]]


async def echo(payload: dict) -> dict:
    """Return the payload unchanged under ``output.echoed_payload``."""
    return {"output": {"echoed_payload": payload}}


class LocalExecutorBackend(ExecutorBackend):
    """Dispatch to Python callables registered by name.

    Useful for tests and for workers that run their step logic in the same
    process as the orchestrator.
    """

    def __init__(self, functions: Optional[Dict[str, ExecutorFunction]] = None) -> None:
        self._functions: Dict[str, ExecutorFunction] = {"echo": echo}
        self._functions.update(functions or {})

    def register(self, name: str, function: ExecutorFunction) -> None:
        self._functions[name] = function

    def names(self) -> list[str]:
        return sorted(self._functions)

    async def invoke(self, name: str, payload: dict[str, Any]) -> Any:
        function = self._functions.get(name)
        if function is None:
            raise ExecutorInvocationError(f"No executor function registered as '{name}'")
        try:
            result = function(payload)
            if inspect.isawaitable(result):
                result = await result
        except StepFailed:
            raise
        except Exception as e:
            logger.warning(f"Executor function '{name}' raised: {e!r}")
            raise ExecutorInvocationError(f"Executor '{name}' failed: {e}") from e
        return result
