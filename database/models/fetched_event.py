"""Fetched source event ledger model."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class FetchedEvent:
    """A source event seen by a monitor for one config."""

    id: int
    config_id: int
    source_event_id: str
    processed: bool
    skipped_reason: Optional[str]
    fetched_at: datetime
    processed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "FetchedEvent":
        """Create FetchedEvent from database row."""
        return cls(
            id=row["id"],
            config_id=row["config_id"],
            source_event_id=row["source_event_id"],
            processed=bool(row["processed"]),
            skipped_reason=row["skipped_reason"],
            fetched_at=row["fetched_at"],
            processed_at=row["processed_at"],
        )
