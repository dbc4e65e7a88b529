from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import DEFAULT_JOB_TOPIC


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    prefix: str = "stepwise"


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    topic: str = DEFAULT_JOB_TOPIC
    redis: RedisConfig = RedisConfig()


class EngineConfig(BaseModel):
    """Execution engine behaviour.

    ``pending_root_status`` decides what happens when a job on the main trunk
    ends PENDING with no parent scope to hand control to: ``"started"`` keeps
    the execution open until the job is resumed, ``"resolved"`` finishes it.
    ``"resolved"`` is the literal reading of the status mapping, where a
    PENDING job maps to a RESOLVED execution; ``"started"`` treats the
    suspension as still in progress.
    """

    pending_root_status: Literal["started", "resolved"] = "started"


class WorkerConfig(BaseModel):
    """Retry policy for the resume worker."""

    max_attempts: int = 3
    backoff_base: float = 1.5
    backoff_jitter: float = 0.5
    backoff_max: float = 60.0


class StepwiseConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    engine: EngineConfig = EngineConfig()
    worker: WorkerConfig = WorkerConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> StepwiseConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPWISE_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPWISE_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepwiseConfig(**data)
    else:
        config = StepwiseConfig()

    env_db_url = os.getenv("STEPWISE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
