"""Execution job model."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from database.models.copy_config import SourceType


class JobStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    DONE = "done"
    FAILED = "failed"


def make_job_id(source_type: SourceType, source_event_id: str, config_id: int) -> str:
    """Build the deterministic job id for a (source event, config) pair."""
    return f"{SourceType(source_type).value}-{source_event_id}-{config_id}"


@dataclass
class ExecutionJob:
    """Queued unit of work referencing a copy record and its config."""

    id: str
    kind: SourceType
    record_id: int
    config_id: int
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    available_at: Optional[datetime] = None
    leased_until: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def for_record(cls, kind: SourceType, source_event_id: str, record_id: int, config_id: int) -> "ExecutionJob":
        """Create a job with the deterministic id for its source event."""
        return cls(
            id=make_job_id(kind, source_event_id, config_id),
            kind=SourceType(kind),
            record_id=record_id,
            config_id=config_id,
        )

    @classmethod
    def from_row(cls, row) -> "ExecutionJob":
        """Create ExecutionJob from database row."""
        return cls(
            id=row["id"],
            kind=SourceType(row["kind"]),
            record_id=row["record_id"],
            config_id=row["config_id"],
            status=JobStatus(row["status"]),
            attempts=row["attempts"] or 0,
            available_at=row["available_at"],
            leased_until=row["leased_until"],
            last_error=row["last_error"],
            created_at=row["created_at"],
        )
