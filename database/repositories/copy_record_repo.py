"""Copy record repository for database operations."""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from database.connection import Database
from database.models import (
    CopyConfig,
    CopyRecord,
    CopyRecordAggregate,
    FailureCategory,
    NewCopyRecord,
    Owner,
    RecordStatus,
)
from database.repositories.copy_config_repo import OWNER_COLUMNS


def _prefixed_select(alias: str, prefix: str, columns: Iterable[str]) -> str:
    return ", ".join(f"{alias}.{col} AS {prefix}{col}" for col in columns)


CONFIG_COLUMNS = (
    "id", "owner_id", "source_type", "trader_address", "signal_categories",
    "copy_buys", "copy_sells", "amount_type", "buy_amount", "sell_amount",
    "min_buy_amount", "max_buy_amount", "min_sell_amount", "max_sell_amount",
    "market_categories", "slippage", "max_retries", "max_buy_trades_per_day",
    "trades_count_today", "last_reset_date", "start_date", "duration_days",
    "enabled", "authorized", "status", "created_at", "updated_at",
)

AGGREGATE_SELECT = f"""
    SELECT r.*,
           {_prefixed_select("c", "config_", CONFIG_COLUMNS)},
           {_prefixed_select("o", "owner_", OWNER_COLUMNS)}
    FROM copy_records r
    LEFT JOIN copy_configs c ON c.id = r.config_id
    LEFT JOIN owners o ON o.id = r.owner_id
"""


def _aggregate_from_row(row) -> CopyRecordAggregate:
    config = None
    if row["config_id"] is not None:
        config = CopyConfig.from_row({col: row[f"config_{col}"] for col in CONFIG_COLUMNS})
    owner = None
    if row["owner_id"] is not None:
        owner = Owner.from_row({col: row[f"owner_{col}"] for col in OWNER_COLUMNS})
    return CopyRecordAggregate(record=CopyRecord.from_row(row), config=config, owner=owner)


class CopyRecordRepository:
    """Repository for copy record operations."""

    def __init__(self, db: Database):
        self.db = db

    async def create_pending(self, new: NewCopyRecord) -> Optional[CopyRecord]:
        """
        Insert a pending copy record.

        Returns:
            The new record, or None if one already exists for (config, source event)
        """
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(
                """
                INSERT INTO copy_records (
                    config_id, owner_id, source_type, source_event_id, source_tx_hash,
                    market_id, token_id, outcome_index, trade_type, market_slug, event_slug,
                    original_amount, original_price, original_shares, copied_amount, status
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, 0, 'pending')
                ON CONFLICT (config_id, source_event_id) DO NOTHING
                RETURNING *
                """,
                new.config_id, new.owner_id, new.source_type.value, new.source_event_id,
                new.source_tx_hash, new.market_id, new.token_id, new.outcome_index,
                new.trade_type.value, new.market_slug, new.event_slug,
                new.original_amount, new.original_price, new.original_shares,
            )
            if row:
                return CopyRecord.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def get_by_id(self, record_id: int) -> Optional[CopyRecord]:
        """Get copy record by ID."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow("SELECT * FROM copy_records WHERE id = $1", record_id)
            if row:
                return CopyRecord.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def get_aggregate(self, record_id: int) -> Optional[CopyRecordAggregate]:
        """Get a copy record with its config and owner."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(f"{AGGREGATE_SELECT} WHERE r.id = $1", record_id)
            if row:
                return _aggregate_from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def get_by_config_and_event(
        self,
        config_id: int,
        source_event_id: str,
    ) -> Optional[CopyRecord]:
        """Get the copy record for a (config, source event) pair."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM copy_records WHERE config_id = $1 AND source_event_id = $2",
                config_id, source_event_id,
            )
            if row:
                return CopyRecord.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def get_by_config(self, config_id: int, limit: int = 100) -> List[CopyRecord]:
        """Get recent copy records for a config."""
        conn = await self.db.get_connection()
        try:
            rows = await conn.fetch(
                """
                SELECT * FROM copy_records
                WHERE config_id = $1
                ORDER BY created_at DESC
                LIMIT $2
                """,
                config_id, limit,
            )
            return [CopyRecord.from_row(row) for row in rows]
        finally:
            await self.db.release_connection(conn)

    async def existing_event_ids(self, config_id: int, event_ids: List[str]) -> Set[str]:
        """Get which of the given source event ids already have a record for this config."""
        if not event_ids:
            return set()
        conn = await self.db.get_connection()
        try:
            rows = await conn.fetch(
                """
                SELECT source_event_id FROM copy_records
                WHERE config_id = $1 AND source_event_id = ANY($2::text[])
                """,
                config_id, list(event_ids),
            )
            return {row["source_event_id"] for row in rows}
        finally:
            await self.db.release_connection(conn)

    async def save_sizing(
        self,
        record_id: int,
        copied_amount: float,
        copied_price: float,
        copied_shares: float,
        cost_basis: Optional[float],
    ) -> bool:
        """Persist computed copy sizing while the record is still pending and unsubmitted."""
        conn = await self.db.get_connection()
        try:
            result = await conn.execute(
                """
                UPDATE copy_records
                SET copied_amount = $2, copied_price = $3, copied_shares = $4,
                    cost_basis = $5, updated_at = NOW()
                WHERE id = $1 AND status = 'pending' AND submission_attempted_at IS NULL
                """,
                record_id, copied_amount, copied_price, copied_shares, cost_basis,
            )
            return result.endswith(" 1")
        finally:
            await self.db.release_connection(conn)

    async def mark_submission_started(self, record_id: int, now: datetime) -> bool:
        """Claim the right to submit this record to the venue. Only one caller ever wins."""
        conn = await self.db.get_connection()
        try:
            result = await conn.execute(
                """
                UPDATE copy_records
                SET submission_attempted_at = $2, updated_at = NOW()
                WHERE id = $1 AND status = 'pending' AND submission_attempted_at IS NULL
                """,
                record_id, now,
            )
            return result.endswith(" 1")
        finally:
            await self.db.release_connection(conn)

    async def mark_submitted(
        self,
        record_id: int,
        order_id: str,
        order_status: Optional[str],
        now: datetime,
    ) -> bool:
        """Move a pending record to pending-settlement with its venue order."""
        conn = await self.db.get_connection()
        try:
            result = await conn.execute(
                """
                UPDATE copy_records
                SET status = 'pending-settlement', order_id = $2, order_status = $3,
                    submitted_at = $4, updated_at = NOW()
                WHERE id = $1 AND status = 'pending'
                """,
                record_id, order_id, order_status, now,
            )
            return result.endswith(" 1")
        finally:
            await self.db.release_connection(conn)

    async def mark_skipped(self, record_id: int, reason: str) -> bool:
        """Move a pending record to skipped."""
        conn = await self.db.get_connection()
        try:
            result = await conn.execute(
                """
                UPDATE copy_records
                SET status = 'skipped', error_message = $2, updated_at = NOW()
                WHERE id = $1 AND status = 'pending'
                """,
                record_id, reason,
            )
            return result.endswith(" 1")
        finally:
            await self.db.release_connection(conn)

    async def mark_failed(
        self,
        record_id: int,
        error_message: str,
        failure_category: FailureCategory,
        failure_reason: str,
        from_statuses=(RecordStatus.PENDING,),
    ) -> bool:
        """Move a record to failed with its classified reason."""
        conn = await self.db.get_connection()
        try:
            result = await conn.execute(
                """
                UPDATE copy_records
                SET status = 'failed', error_message = $2, failure_category = $3,
                    failure_reason = $4, updated_at = NOW()
                WHERE id = $1 AND status = ANY($5::text[])
                """,
                record_id, error_message, FailureCategory(failure_category).value,
                failure_reason, [RecordStatus(s).value for s in from_statuses],
            )
            return result.endswith(" 1")
        finally:
            await self.db.release_connection(conn)

    async def update_order_status(self, record_id: int, order_status: str) -> None:
        """Record the latest observed venue order status."""
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                UPDATE copy_records
                SET order_status = $2, updated_at = NOW()
                WHERE id = $1 AND status = 'pending-settlement'
                """,
                record_id, order_status,
            )
        finally:
            await self.db.release_connection(conn)

    async def mark_settled(
        self,
        record_id: int,
        order_status: str,
        copied_price: Optional[float],
        copied_shares: Optional[float],
        settlement_tx_hash: Optional[str],
        now: datetime,
    ) -> bool:
        """Move a pending-settlement record to settled with final fill values."""
        conn = await self.db.get_connection()
        try:
            result = await conn.execute(
                """
                UPDATE copy_records
                SET status = 'settled', order_status = $2,
                    copied_price = COALESCE($3, copied_price),
                    copied_shares = COALESCE($4, copied_shares),
                    settlement_tx_hash = $5, settled_at = $6, updated_at = NOW()
                WHERE id = $1 AND status = 'pending-settlement'
                """,
                record_id, order_status, copied_price, copied_shares, settlement_tx_hash, now,
            )
            return result.endswith(" 1")
        finally:
            await self.db.release_connection(conn)

    async def get_stale_pending(self, older_than: datetime, limit: int = 100) -> List[CopyRecord]:
        """Get pending, never-submitted records created before a cutoff."""
        conn = await self.db.get_connection()
        try:
            rows = await conn.fetch(
                """
                SELECT * FROM copy_records
                WHERE status = 'pending' AND submission_attempted_at IS NULL
                  AND config_id IS NOT NULL AND created_at < $1
                ORDER BY created_at
                LIMIT $2
                """,
                older_than, limit,
            )
            return [CopyRecord.from_row(row) for row in rows]
        finally:
            await self.db.release_connection(conn)

    async def get_pending_settlement(self, limit: int = 100) -> List[CopyRecordAggregate]:
        """Get submitted records still waiting for their order to settle."""
        conn = await self.db.get_connection()
        try:
            rows = await conn.fetch(
                f"""
                {AGGREGATE_SELECT}
                WHERE r.status = 'pending-settlement' AND r.order_id IS NOT NULL
                ORDER BY r.submitted_at NULLS FIRST, r.id
                LIMIT $1
                """,
                limit,
            )
            return [_aggregate_from_row(row) for row in rows]
        finally:
            await self.db.release_connection(conn)

    async def get_redemption_candidates(
        self,
        limit: int,
        max_attempts: int,
    ) -> List[CopyRecordAggregate]:
        """
        Get settled buy records whose collateral has not been redeemed yet.

        Records checked least recently come first, so a backlog of
        positions on open markets cannot hide newly resolved ones.
        """
        conn = await self.db.get_connection()
        try:
            rows = await conn.fetch(
                f"""
                {AGGREGATE_SELECT}
                WHERE r.status = 'settled' AND r.trade_type = 'buy'
                  AND (
                    r.redemption_status IS NULL
                    OR r.redemption_status = 'pending'
                    OR (r.redemption_status = 'failed' AND r.redemption_attempts < $2)
                  )
                ORDER BY r.redemption_checked_at NULLS FIRST, r.settled_at NULLS FIRST, r.id
                LIMIT $1
                """,
                limit, max_attempts,
            )
            return [_aggregate_from_row(row) for row in rows]
        finally:
            await self.db.release_connection(conn)

    async def mark_redemption_checked(self, record_ids: List[int], now: datetime) -> None:
        """Stamp records considered by a redemption scan."""
        if not record_ids:
            return
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                UPDATE copy_records
                SET redemption_checked_at = $2, updated_at = NOW()
                WHERE id = ANY($1::int[])
                """,
                record_ids, now,
            )
        finally:
            await self.db.release_connection(conn)

    async def mark_redemption_pending(self, record_id: int) -> bool:
        """Mark a redemption attempt as started."""
        conn = await self.db.get_connection()
        try:
            result = await conn.execute(
                """
                UPDATE copy_records
                SET redemption_status = 'pending', redemption_attempts = redemption_attempts + 1,
                    updated_at = NOW()
                WHERE id = $1 AND status = 'settled'
                  AND (redemption_status IS NULL OR redemption_status IN ('pending', 'failed'))
                """,
                record_id,
            )
            return result.endswith(" 1")
        finally:
            await self.db.release_connection(conn)

    async def mark_redeemed(self, record_id: int, tx_hash: Optional[str], now: datetime) -> None:
        """Record a successful redemption."""
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                UPDATE copy_records
                SET redemption_status = 'redeemed', redemption_tx_hash = $2,
                    redemption_error = NULL, redeemed_at = $3, updated_at = NOW()
                WHERE id = $1
                """,
                record_id, tx_hash, now,
            )
        finally:
            await self.db.release_connection(conn)

    async def mark_redemption_failed(self, record_id: int, error: str) -> None:
        """Record a failed redemption attempt."""
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                UPDATE copy_records
                SET redemption_status = 'failed', redemption_error = $2, updated_at = NOW()
                WHERE id = $1
                """,
                record_id, error,
            )
        finally:
            await self.db.release_connection(conn)

    async def mark_resolved(
        self,
        record_id: int,
        now: datetime,
        outcome: Optional[str] = None,
        pnl: Optional[float] = None,
    ) -> None:
        """Record that the record's market has resolved."""
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                UPDATE copy_records
                SET resolved_at = COALESCE(resolved_at, $2),
                    outcome = COALESCE($3, outcome),
                    pnl = COALESCE($4, pnl),
                    updated_at = NOW()
                WHERE id = $1
                """,
                record_id, now, outcome, pnl,
            )
        finally:
            await self.db.release_connection(conn)

    async def count_by_status(self, config_id: int) -> Dict[str, int]:
        """Count a config's records by status and redemption status."""
        conn = await self.db.get_connection()
        try:
            rows = await conn.fetch(
                """
                SELECT status AS key, COUNT(*) AS n FROM copy_records
                WHERE config_id = $1 GROUP BY status
                UNION ALL
                SELECT 'redemption:' || redemption_status AS key, COUNT(*) AS n FROM copy_records
                WHERE config_id = $1 AND redemption_status IS NOT NULL GROUP BY redemption_status
                """,
                config_id,
            )
            return {row["key"]: row["n"] for row in rows}
        finally:
            await self.db.release_connection(conn)

