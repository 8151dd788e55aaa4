"""Tests for configuration loading."""

import pytest

from tickflow.config import TickflowConfig, load_config
from tickflow.errors import ConfigError
from tickflow.executors import LocalExecutorBackend, get_executor_backend
from tickflow.executors.http import HttpExecutorBackend
from tickflow.persistence import InMemoryJobStore, SQLJobStore, get_store


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("TICKFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    config = load_config()
    assert config.database_url is None
    assert config.orchestrator.batch_size == 10
    assert config.orchestrator.max_retries == 3
    assert config.executor.backend == "local"
    assert config.executor.timeout == 30


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
orchestrator:
  batch_size: 25
  lease_seconds: 600
executor:
  backend: http
  timeout: 45
  http:
    base_url: https://functions.example.com
"""
    )
    monkeypatch.setenv("TICKFLOW_CONFIG", str(config_path))
    monkeypatch.setenv("TICKFLOW_EXECUTOR_KEY", "service-key")
    monkeypatch.setenv("TICKFLOW_ORCHESTRATOR_SECRET", "s3cret")

    config = load_config()
    assert config.orchestrator.batch_size == 25
    assert config.executor.backend == "http"
    assert config.executor.timeout == 45
    assert config.executor.http.base_url == "https://functions.example.com"
    assert config.executor.http.api_key == "service-key"
    assert config.require_secret() == "s3cret"


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///from-env.db")
    config = load_config(str(config_path))
    assert config.database_url == "sqlite:///from-env.db"


def test_lease_must_outlast_executor_timeout(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "orchestrator:\n  lease_seconds: 10\nexecutor:\n  timeout: 30\n"
    )
    with pytest.raises(ConfigError):
        load_config(str(config_path))


def test_http_backend_requires_base_url(monkeypatch, tmp_path):
    monkeypatch.setenv("TICKFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setenv("TICKFLOW_EXECUTOR_BACKEND", "http")
    with pytest.raises(ConfigError):
        load_config()


def test_missing_secret_is_reported():
    with pytest.raises(ConfigError):
        TickflowConfig().require_secret()


def test_get_executor_backend_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "executor:\n  backend: http\n  http:\n    base_url: http://exec.local/fn/\n"
    )
    monkeypatch.setenv("TICKFLOW_CONFIG", str(config_path))

    backend = get_executor_backend()
    assert isinstance(backend, HttpExecutorBackend)
    assert backend.base_url == "http://exec.local/fn"
    assert isinstance(get_executor_backend("local"), LocalExecutorBackend)


def test_get_store_selects_backend(tmp_path, monkeypatch):
    monkeypatch.setenv("TICKFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    assert isinstance(get_store(), InMemoryJobStore)
    # the first store is reused until a new URL or config is given
    assert get_store() is get_store()

    store = get_store(f"sqlite:///{tmp_path / 'jobs.db'}")
    assert isinstance(store, SQLJobStore)
    assert store.database_url.startswith("sqlite+aiosqlite:///")
