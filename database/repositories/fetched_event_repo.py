"""Fetched source event ledger repository."""

from typing import List, Optional, Set

from database.connection import Database
from database.models import FetchedEvent


class FetchedEventRepository:
    """Repository for the per-config ledger of source events a monitor has seen."""

    def __init__(self, db: Database):
        self.db = db

    async def record_fetched(self, config_id: int, event_ids: List[str]) -> None:
        """Insert ledger entries for events not seen before."""
        if not event_ids:
            return
        conn = await self.db.get_connection()
        try:
            await conn.executemany(
                """
                INSERT INTO fetched_events (config_id, source_event_id)
                VALUES ($1, $2)
                ON CONFLICT (config_id, source_event_id) DO NOTHING
                """,
                [(config_id, event_id) for event_id in event_ids],
            )
        finally:
            await self.db.release_connection(conn)

    async def processed_event_ids(self, config_id: int, event_ids: List[str]) -> Set[str]:
        """Get which of the given events are already marked processed."""
        if not event_ids:
            return set()
        conn = await self.db.get_connection()
        try:
            rows = await conn.fetch(
                """
                SELECT source_event_id FROM fetched_events
                WHERE config_id = $1 AND processed AND source_event_id = ANY($2::text[])
                """,
                config_id, list(event_ids),
            )
            return {row["source_event_id"] for row in rows}
        finally:
            await self.db.release_connection(conn)

    async def mark_processed(
        self,
        config_id: int,
        source_event_id: str,
        skipped_reason: Optional[str] = None,
    ) -> None:
        """Mark an event processed, optionally with the reason it was skipped."""
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                INSERT INTO fetched_events (config_id, source_event_id, processed, skipped_reason, processed_at)
                VALUES ($1, $2, TRUE, $3, NOW())
                ON CONFLICT (config_id, source_event_id)
                DO UPDATE SET processed = TRUE, skipped_reason = EXCLUDED.skipped_reason,
                              processed_at = NOW()
                """,
                config_id, source_event_id, skipped_reason,
            )
        finally:
            await self.db.release_connection(conn)

    async def get(self, config_id: int, source_event_id: str) -> Optional[FetchedEvent]:
        """Get one ledger entry."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM fetched_events WHERE config_id = $1 AND source_event_id = $2",
                config_id, source_event_id,
            )
            if row:
                return FetchedEvent.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)
