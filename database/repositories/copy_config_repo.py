"""Copy config repository for database operations."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from database.connection import Database
from database.models import ConfigWithOwner, CopyConfig, Owner, SourceType

# Columns a caller may set on create/update
CONFIG_FIELDS = (
    "trader_address",
    "signal_categories",
    "copy_buys",
    "copy_sells",
    "amount_type",
    "buy_amount",
    "sell_amount",
    "min_buy_amount",
    "max_buy_amount",
    "min_sell_amount",
    "max_sell_amount",
    "market_categories",
    "slippage",
    "max_retries",
    "max_buy_trades_per_day",
    "trades_count_today",
    "last_reset_date",
    "start_date",
    "duration_days",
    "enabled",
    "authorized",
    "status",
)

OWNER_COLUMNS = (
    "id",
    "address",
    "signer_address",
    "encrypted_private_key",
    "encryption_salt",
    "api_credentials_encrypted",
    "api_credentials_salt",
    "created_at",
)


def clean_config_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - set(CONFIG_FIELDS)
    if unknown:
        raise ValueError(f"Unknown copy config fields: {sorted(unknown)}")
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in fields.items()
    }


def _owner_select() -> str:
    return ", ".join(f"o.{col} AS owner_{col}" for col in OWNER_COLUMNS)


def _split_owner(row) -> Owner:
    return Owner.from_row({col: row[f"owner_{col}"] for col in OWNER_COLUMNS})


class CopyConfigRepository:
    """Repository for copy config operations."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        owner_id: int,
        source_type: SourceType,
        **fields,
    ) -> CopyConfig:
        """Create a new copy config."""
        values = clean_config_fields(fields)
        if values.get("trader_address"):
            values["trader_address"] = values["trader_address"].lower()
        columns = ["owner_id", "source_type", *values.keys()]
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(
                f"""
                INSERT INTO copy_configs ({", ".join(columns)})
                VALUES ({placeholders})
                RETURNING *
                """,
                owner_id, SourceType(source_type).value, *values.values(),
            )
            return CopyConfig.from_row(row)
        finally:
            await self.db.release_connection(conn)

    async def get_by_id(self, config_id: int) -> Optional[CopyConfig]:
        """Get copy config by ID."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow("SELECT * FROM copy_configs WHERE id = $1", config_id)
            if row:
                return CopyConfig.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def get_with_owner(self, config_id: int) -> Optional[ConfigWithOwner]:
        """Get copy config together with its owner."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(
                f"""
                SELECT c.*, {_owner_select()}
                FROM copy_configs c
                JOIN owners o ON o.id = c.owner_id
                WHERE c.id = $1
                """,
                config_id,
            )
            if row:
                return ConfigWithOwner(config=CopyConfig.from_row(row), owner=_split_owner(row))
            return None
        finally:
            await self.db.release_connection(conn)

    async def get_by_owner(self, owner_id: int) -> List[CopyConfig]:
        """Get all copy configs for an owner."""
        conn = await self.db.get_connection()
        try:
            rows = await conn.fetch(
                "SELECT * FROM copy_configs WHERE owner_id = $1 ORDER BY created_at DESC",
                owner_id,
            )
            return [CopyConfig.from_row(row) for row in rows]
        finally:
            await self.db.release_connection(conn)

    async def get_by_owner_and_trader(
        self,
        owner_id: int,
        trader_address: str,
    ) -> Optional[CopyConfig]:
        """Get the copy config an owner has for a trader."""
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(
                """
                SELECT * FROM copy_configs
                WHERE owner_id = $1 AND LOWER(trader_address) = LOWER($2)
                """,
                owner_id, trader_address,
            )
            if row:
                return CopyConfig.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def get_monitored(self, source_type: SourceType) -> List[ConfigWithOwner]:
        """Get enabled and authorized configs of one source type with their owners."""
        conn = await self.db.get_connection()
        try:
            rows = await conn.fetch(
                f"""
                SELECT c.*, {_owner_select()}
                FROM copy_configs c
                JOIN owners o ON o.id = c.owner_id
                WHERE c.source_type = $1 AND c.enabled AND c.authorized
                ORDER BY c.id
                """,
                SourceType(source_type).value,
            )
            return [
                ConfigWithOwner(config=CopyConfig.from_row(row), owner=_split_owner(row))
                for row in rows
            ]
        finally:
            await self.db.release_connection(conn)

    async def update(self, config_id: int, **fields) -> Optional[CopyConfig]:
        """Update config columns and return the stored config."""
        values = clean_config_fields(fields)
        if not values:
            return await self.get_by_id(config_id)
        if values.get("trader_address"):
            values["trader_address"] = values["trader_address"].lower()
        assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(values, start=2))
        conn = await self.db.get_connection()
        try:
            row = await conn.fetchrow(
                f"""
                UPDATE copy_configs
                SET {assignments}, updated_at = NOW()
                WHERE id = $1
                RETURNING *
                """,
                config_id, *values.values(),
            )
            if row:
                return CopyConfig.from_row(row)
            return None
        finally:
            await self.db.release_connection(conn)

    async def delete(self, config_id: int) -> bool:
        """Delete a config; its copy records keep their history with a null config."""
        conn = await self.db.get_connection()
        try:
            result = await conn.execute("DELETE FROM copy_configs WHERE id = $1", config_id)
            return result.endswith(" 1")
        finally:
            await self.db.release_connection(conn)

    async def auto_pause(self, config_id: int) -> bool:
        """Pause an active config whose duration has elapsed. Returns True if this call paused it."""
        conn = await self.db.get_connection()
        try:
            result = await conn.execute(
                """
                UPDATE copy_configs
                SET status = 'paused', enabled = FALSE, updated_at = NOW()
                WHERE id = $1 AND status = 'active'
                """,
                config_id,
            )
            return result.endswith(" 1")
        finally:
            await self.db.release_connection(conn)

    async def reset_daily_counter(
        self,
        config_id: int,
        expected_last_reset: Optional[datetime],
        now: datetime,
    ) -> bool:
        """
        Reset the daily buy counter if nobody else reset it first.

        The write only applies while last_reset_date still holds the value
        the caller read.
        """
        conn = await self.db.get_connection()
        try:
            result = await conn.execute(
                """
                UPDATE copy_configs
                SET trades_count_today = 0, last_reset_date = $3, updated_at = NOW()
                WHERE id = $1 AND last_reset_date IS NOT DISTINCT FROM $2
                """,
                config_id, expected_last_reset, now,
            )
            return result.endswith(" 1")
        finally:
            await self.db.release_connection(conn)

    async def reserve_buy_slot(self, config_id: int) -> bool:
        """Increment the daily buy counter only while it is below the quota."""
        conn = await self.db.get_connection()
        try:
            count = await conn.fetchval(
                """
                UPDATE copy_configs
                SET trades_count_today = trades_count_today + 1, updated_at = NOW()
                WHERE id = $1
                  AND (max_buy_trades_per_day IS NULL OR trades_count_today < max_buy_trades_per_day)
                RETURNING trades_count_today
                """,
                config_id,
            )
            return count is not None
        finally:
            await self.db.release_connection(conn)

    async def release_buy_slot(self, config_id: int) -> None:
        """Give back a reserved buy slot after a failed submission."""
        conn = await self.db.get_connection()
        try:
            await conn.execute(
                """
                UPDATE copy_configs
                SET trades_count_today = trades_count_today - 1, updated_at = NOW()
                WHERE id = $1 AND trades_count_today > 0
                """,
                config_id,
            )
        finally:
            await self.db.release_connection(conn)
