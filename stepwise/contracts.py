"""Messages exchanged between job producers and the resume worker."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import JobStatus


class JobUpdateMessage(BaseModel):
    """Completion (or refinement) of a suspended job delivered from outside.

    The worker applies ``status`` and ``result`` to the stored job and resumes
    the execution from it.
    """

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    execution_id: int
    job_id: int
    status: JobStatus = JobStatus.RESOLVED
    result: Any = None
    attempt: int = 1
    trace_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    spec_version: str = "1.0"

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.lstrip("-").isdigit():
            try:
                return JobStatus[value.upper()]
            except KeyError:
                raise ValueError(f"unknown job status {value!r}") from None
        return value

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "JobUpdateMessage":
        """Deserialize message from JSON."""
        return cls.model_validate_json(data)

    def bump_attempt(self) -> "JobUpdateMessage":
        """Copy of this message for redelivery after a transient failure."""
        return self.model_copy(
            update={"attempt": self.attempt + 1, "message_id": str(uuid.uuid4())}
        )
