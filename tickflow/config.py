from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_EXECUTOR_TIMEOUT,
    DEFAULT_LEASE_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_STORE_TIMEOUT,
    DEFAULT_TICK_INTERVAL,
    DEFAULT_TICK_TIMEOUT,
)
from .errors import ConfigError


class HttpExecutorConfig(BaseModel):
    """Configuration for the HTTP executor backend."""

    base_url: Optional[str] = None
    api_key: Optional[str] = None


class ExecutorConfig(BaseModel):
    """Executor backend settings."""

    backend: Literal["local", "http"] = "local"
    timeout: float = Field(default=DEFAULT_EXECUTOR_TIMEOUT, gt=0)
    http: HttpExecutorConfig = HttpExecutorConfig()

    @model_validator(mode="after")
    def _check_http(self) -> "ExecutorConfig":
        if self.backend == "http" and not self.http.base_url:
            raise ValueError("executor.http.base_url is required for the http backend")
        return self


class OrchestratorConfig(BaseModel):
    """Scheduler tuning."""

    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, gt=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    lease_seconds: float = Field(default=DEFAULT_LEASE_SECONDS, gt=0)
    store_timeout: float = Field(default=DEFAULT_STORE_TIMEOUT, gt=0)
    tick_timeout: float = Field(default=DEFAULT_TICK_TIMEOUT, gt=0)
    interval: float = Field(default=DEFAULT_TICK_INTERVAL, gt=0)


class TickflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    orchestrator_secret: Optional[str] = None
    orchestrator: OrchestratorConfig = OrchestratorConfig()
    executor: ExecutorConfig = ExecutorConfig()

    @model_validator(mode="after")
    def _check_lease(self) -> "TickflowConfig":
        # a lease shorter than a step could expire while the step is still running
        if self.orchestrator.lease_seconds <= self.executor.timeout:
            raise ValueError(
                "orchestrator.lease_seconds must be greater than executor.timeout"
            )
        return self

    def require_secret(self) -> str:
        """Return the orchestrator secret or fail if it is not configured."""
        if not self.orchestrator_secret:
            raise ConfigError(
                "orchestrator_secret must be set (TICKFLOW_ORCHESTRATOR_SECRET)"
            )
        return self.orchestrator_secret


def load_config(path: Optional[str] = None) -> TickflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TICKFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.

    Environment variables override file values for the database URL, the
    orchestrator secret and the executor endpoint.
    """

    config_path = path or os.getenv("TICKFLOW_CONFIG", "config.yaml")
    data: dict = {}
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

    env_db_url = os.getenv("TICKFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        data["database_url"] = env_db_url
    env_secret = os.getenv("TICKFLOW_ORCHESTRATOR_SECRET")
    if env_secret:
        data["orchestrator_secret"] = env_secret

    executor = data.setdefault("executor", {}) or {}
    data["executor"] = executor
    if os.getenv("TICKFLOW_EXECUTOR_BACKEND"):
        executor["backend"] = os.environ["TICKFLOW_EXECUTOR_BACKEND"]
    http = executor.setdefault("http", {}) or {}
    executor["http"] = http
    if os.getenv("TICKFLOW_EXECUTOR_URL"):
        http["base_url"] = os.environ["TICKFLOW_EXECUTOR_URL"]
    if os.getenv("TICKFLOW_EXECUTOR_KEY"):
        http["api_key"] = os.environ["TICKFLOW_EXECUTOR_KEY"]

    try:
        return TickflowConfig(**data)
    except ValueError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
