"""Executor backend factory."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TickflowConfig, load_config
from .base import ExecutorBackend
from .local import LocalExecutorBackend, echo


def get_executor_backend(
    backend: Optional[str] = None, config: Optional[TickflowConfig] = None
) -> ExecutorBackend:
    """Factory function to get the configured executor backend."""

    config = config or load_config()
    backend = (
        backend or os.getenv("TICKFLOW_EXECUTOR_BACKEND") or config.executor.backend
    ).lower()

    if backend == "local":
        return LocalExecutorBackend()
    elif backend == "http":
        from .http import HttpExecutorBackend

        http_conf = config.executor.http
        if not http_conf.base_url:
            raise ValueError("executor.http.base_url is required for the http backend")
        return HttpExecutorBackend(base_url=http_conf.base_url, api_key=http_conf.api_key)
    else:
        raise ValueError(f"Unsupported executor backend: {backend}")


__all__ = ["ExecutorBackend", "LocalExecutorBackend", "echo", "get_executor_backend"]
