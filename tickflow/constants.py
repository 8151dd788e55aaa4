"""Shared defaults for tickflow."""

from __future__ import annotations

from datetime import timedelta

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_RETRIES = 3

# attempt number -> delay before that retry
BACKOFF_SCHEDULE: tuple[timedelta, ...] = (
    timedelta(minutes=1),
    timedelta(minutes=2),
    timedelta(minutes=5),
)

DEFAULT_EXECUTOR_TIMEOUT = 30.0
DEFAULT_STORE_TIMEOUT = 10.0
DEFAULT_TICK_TIMEOUT = 120.0
DEFAULT_LEASE_SECONDS = 300.0
DEFAULT_TICK_INTERVAL = 60.0

ROOT_PATH = "$"
