"""Base interface for step executor backends."""

from __future__ import annotations

import abc
from typing import Any


class ExecutorBackend(metaclass=abc.ABCMeta):
    """Invokes named executor functions with a JSON payload.

    Implementations raise ``ExecutorInvocationError`` when the function cannot
    be reached or reports an error.
    """

    async def connect(self) -> None:
        """Open resources (no-op by default)."""
        pass

    async def close(self) -> None:
        """Release resources (no-op by default)."""
        pass

    @abc.abstractmethod
    async def invoke(self, name: str, payload: dict[str, Any]) -> Any:
        """Run executor ``name`` with ``payload`` and return its JSON response."""
        raise NotImplementedError
