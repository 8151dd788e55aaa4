"""Job store gateway for tickflow."""

from __future__ import annotations

import os
from typing import Optional

from ..config import TickflowConfig, load_config
from .inmemory import InMemoryJobStore
from .repository import UPDATABLE_FIELDS, JobStore
from .sql import SQLJobStore, normalize_database_url

_store_instance: JobStore | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[TickflowConfig] = None
) -> JobStore:
    """Factory function to obtain a job store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``TICKFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("TICKFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _store_instance = InMemoryJobStore()
    else:
        _store_instance = SQLJobStore(database_url)
    return _store_instance


__all__ = [
    "JobStore",
    "InMemoryJobStore",
    "SQLJobStore",
    "UPDATABLE_FIELDS",
    "get_store",
    "normalize_database_url",
]
