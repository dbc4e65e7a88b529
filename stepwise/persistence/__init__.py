"""Repositories holding workflow templates, executions and their jobs."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepwiseConfig, load_config
from .inmemory import InMemoryExecutionRepository, InMemoryTransaction
from .models import Execution, Job, Node, Workflow
from .repository import ExecutionRepository, Transaction
from .sqlite import SQLiteExecutionRepository, SQLiteTransaction

try:  # pragma: no cover - asyncpg is optional at runtime
    from .postgres import PostgresExecutionRepository
except ImportError:  # pragma: no cover
    PostgresExecutionRepository = None  # type: ignore

POSTGRES_SCHEMES = ("postgres", "postgresql")

# process wide repository used when callers do not pass a URL or config
_repository_instance: ExecutionRepository | None = None


def open_repository(database_url: Optional[str]) -> ExecutionRepository:
    """Create a repository for ``database_url``; in-memory when it is empty."""
    if not database_url:
        return InMemoryExecutionRepository()

    scheme, sep, rest = database_url.partition("://")
    if not sep:
        raise ValueError(f"Database URL has no scheme: {database_url}")
    if scheme == "sqlite":
        return SQLiteExecutionRepository(rest)
    if scheme in POSTGRES_SCHEMES:
        if PostgresExecutionRepository is None:
            raise RuntimeError("Postgres support requires the asyncpg package")
        return PostgresExecutionRepository(database_url)
    raise ValueError(f"Unsupported database backend: {scheme}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[StepwiseConfig] = None
) -> ExecutionRepository:
    """Return the repository for the configured database.

    The URL comes from ``database_url``, then ``STEPWISE_DATABASE_URL`` or
    ``DATABASE_URL``, then ``config.database_url``. Without explicit arguments
    the first repository built is reused.
    """
    global _repository_instance
    explicit = database_url is not None or config is not None
    if _repository_instance is not None and not explicit:
        return _repository_instance

    if database_url is None:
        database_url = (
            os.getenv("STEPWISE_DATABASE_URL")
            or os.getenv("DATABASE_URL")
            or (config or load_config()).database_url
        )
    _repository_instance = open_repository(database_url)
    return _repository_instance


__all__ = [
    "Execution",
    "ExecutionRepository",
    "InMemoryExecutionRepository",
    "InMemoryTransaction",
    "Job",
    "Node",
    "PostgresExecutionRepository",
    "SQLiteExecutionRepository",
    "SQLiteTransaction",
    "Transaction",
    "Workflow",
    "get_repository",
    "open_repository",
]
