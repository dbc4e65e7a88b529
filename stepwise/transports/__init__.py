"""Transports carrying job updates between producers and resume workers."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepwiseConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport


def get_transport(
    backend: Optional[str] = None, config: Optional[StepwiseConfig] = None
) -> BaseTransport:
    """Build the transport named by ``backend``, ``STEPWISE_TRANSPORT`` or the config."""
    config = config or load_config()
    name = (backend or os.getenv("STEPWISE_TRANSPORT") or config.transport.backend).lower()

    if name == "inmemory":
        return InMemoryTransport()
    if name == "redis":
        from .redis import RedisTransport

        return RedisTransport(**config.transport.redis.model_dump())
    raise ValueError(f"Unsupported transport backend: {name}")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
