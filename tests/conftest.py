"""Shared fixtures for stepwise tests."""

from __future__ import annotations

import pytest

import stepwise.persistence as persistence
from stepwise.persistence import InMemoryExecutionRepository


@pytest.fixture
def repo() -> InMemoryExecutionRepository:
    return InMemoryExecutionRepository()


@pytest.fixture
def cli_repo(monkeypatch, tmp_path) -> InMemoryExecutionRepository:
    """In-memory repository installed as the process wide default."""
    monkeypatch.setenv("STEPWISE_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("STEPWISE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    repository = InMemoryExecutionRepository()
    monkeypatch.setattr(persistence, "_repository_instance", repository)
    return repository
