"""PostgreSQL database connection and initialization using asyncpg."""

import asyncpg
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class Database:
    """Async PostgreSQL database manager using connection pool."""

    def __init__(self, database_url: str, min_size: int = 2, max_size: int = 10):
        self.database_url = database_url
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def get_connection(self) -> asyncpg.Connection:
        """Get a connection from the pool."""
        if self._pool is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return await self._pool.acquire()

    async def release_connection(self, conn: asyncpg.Connection) -> None:
        """Release a connection back to the pool."""
        if self._pool:
            await self._pool.release(conn)

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    async def initialize(self) -> None:
        """Create connection pool and initialize database tables."""
        self._pool = await asyncpg.create_pool(
            self.database_url,
            min_size=self.min_size,
            max_size=self.max_size,
        )
        logger.info("Database connection pool created")

        await self._create_tables()
        logger.info("Database tables initialized")

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        conn = await self.get_connection()
        try:
            # Owners table
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS owners (
                    id SERIAL PRIMARY KEY,
                    address TEXT NOT NULL UNIQUE,
                    signer_address TEXT,
                    encrypted_private_key BYTEA,
                    encryption_salt BYTEA,
                    api_credentials_encrypted BYTEA,
                    api_credentials_salt BYTEA,
                    created_at TIMESTAMPTZ DEFAULT NOW()
                )
            """)

            # Copy configs table
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS copy_configs (
                    id SERIAL PRIMARY KEY,
                    owner_id INTEGER NOT NULL,
                    source_type TEXT NOT NULL CHECK(source_type IN ('trade', 'signal')),
                    trader_address TEXT,
                    signal_categories TEXT[] DEFAULT '{}',
                    copy_buys BOOLEAN NOT NULL DEFAULT TRUE,
                    copy_sells BOOLEAN NOT NULL DEFAULT TRUE,
                    amount_type TEXT NOT NULL CHECK(amount_type IN ('fixed', 'percentage', 'percentageOfOriginal')),
                    buy_amount DOUBLE PRECISION NOT NULL DEFAULT 0,
                    sell_amount DOUBLE PRECISION NOT NULL DEFAULT 0,
                    min_buy_amount DOUBLE PRECISION,
                    max_buy_amount DOUBLE PRECISION,
                    min_sell_amount DOUBLE PRECISION,
                    max_sell_amount DOUBLE PRECISION,
                    market_categories TEXT[] DEFAULT '{}',
                    slippage DOUBLE PRECISION NOT NULL DEFAULT 0.05,
                    max_retries INTEGER NOT NULL DEFAULT 3,
                    max_buy_trades_per_day INTEGER,
                    trades_count_today INTEGER NOT NULL DEFAULT 0,
                    last_reset_date TIMESTAMPTZ,
                    start_date TIMESTAMPTZ,
                    duration_days INTEGER,
                    enabled BOOLEAN NOT NULL DEFAULT FALSE,
                    authorized BOOLEAN NOT NULL DEFAULT FALSE,
                    status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'paused', 'disabled')),
                    created_at TIMESTAMPTZ DEFAULT NOW(),
                    updated_at TIMESTAMPTZ DEFAULT NOW(),
                    FOREIGN KEY (owner_id) REFERENCES owners(id) ON DELETE CASCADE
                )
            """)

            # Copy records table (history survives config deletion)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS copy_records (
                    id SERIAL PRIMARY KEY,
                    config_id INTEGER,
                    owner_id INTEGER,
                    source_type TEXT NOT NULL CHECK(source_type IN ('trade', 'signal')),
                    source_event_id TEXT NOT NULL,
                    source_tx_hash TEXT,
                    market_id TEXT NOT NULL,
                    token_id TEXT,
                    outcome_index INTEGER NOT NULL,
                    trade_type TEXT NOT NULL CHECK(trade_type IN ('buy', 'sell')),
                    market_slug TEXT,
                    event_slug TEXT,
                    original_amount DOUBLE PRECISION NOT NULL,
                    original_price DOUBLE PRECISION NOT NULL,
                    original_shares DOUBLE PRECISION,
                    copied_amount DOUBLE PRECISION DEFAULT 0,
                    copied_price DOUBLE PRECISION,
                    copied_shares DOUBLE PRECISION,
                    cost_basis DOUBLE PRECISION,
                    order_id TEXT,
                    order_status TEXT,
                    settlement_tx_hash TEXT,
                    status TEXT NOT NULL DEFAULT 'pending'
                        CHECK(status IN ('pending', 'skipped', 'pending-settlement', 'settled', 'failed')),
                    error_message TEXT,
                    failure_category TEXT
                        CHECK(failure_category IN ('balance', 'validation', 'market', 'execution', 'other')),
                    failure_reason TEXT,
                    submission_attempted_at TIMESTAMPTZ,
                    submitted_at TIMESTAMPTZ,
                    settled_at TIMESTAMPTZ,
                    outcome TEXT,
                    pnl DOUBLE PRECISION,
                    resolved_at TIMESTAMPTZ,
                    redemption_status TEXT CHECK(redemption_status IN ('pending', 'redeemed', 'failed')),
                    redemption_tx_hash TEXT,
                    redemption_error TEXT,
                    redemption_attempts INTEGER NOT NULL DEFAULT 0,
                    redeemed_at TIMESTAMPTZ,
                    redemption_checked_at TIMESTAMPTZ,
                    created_at TIMESTAMPTZ DEFAULT NOW(),
                    updated_at TIMESTAMPTZ DEFAULT NOW(),
                    FOREIGN KEY (config_id) REFERENCES copy_configs(id) ON DELETE SET NULL,
                    FOREIGN KEY (owner_id) REFERENCES owners(id) ON DELETE SET NULL,
                    UNIQUE(config_id, source_event_id)
                )
            """)

            # Fetched source events ledger
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS fetched_events (
                    id SERIAL PRIMARY KEY,
                    config_id INTEGER NOT NULL,
                    source_event_id TEXT NOT NULL,
                    processed BOOLEAN NOT NULL DEFAULT FALSE,
                    skipped_reason TEXT,
                    fetched_at TIMESTAMPTZ DEFAULT NOW(),
                    processed_at TIMESTAMPTZ,
                    FOREIGN KEY (config_id) REFERENCES copy_configs(id) ON DELETE CASCADE,
                    UNIQUE(config_id, source_event_id)
                )
            """)

            # Execution jobs (durable broker)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS execution_jobs (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL CHECK(kind IN ('trade', 'signal')),
                    record_id INTEGER NOT NULL,
                    config_id INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'queued' CHECK(status IN ('queued', 'active', 'done', 'failed')),
                    attempts INTEGER NOT NULL DEFAULT 0,
                    available_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    leased_until TIMESTAMPTZ,
                    last_error TEXT,
                    created_at TIMESTAMPTZ DEFAULT NOW(),
                    updated_at TIMESTAMPTZ DEFAULT NOW()
                )
            """)

            # Create indexes
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_copy_configs_owner_id ON copy_configs(owner_id)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_copy_configs_source ON copy_configs(source_type, enabled, authorized)")
            await conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_copy_configs_owner_trader "
                "ON copy_configs(owner_id, LOWER(trader_address)) WHERE trader_address IS NOT NULL"
            )
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_copy_records_config_id ON copy_records(config_id)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_copy_records_status ON copy_records(status)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_copy_records_redemption ON copy_records(status, redemption_status)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_fetched_events_config_id ON fetched_events(config_id)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_execution_jobs_dispatch ON execution_jobs(status, available_at)")

        finally:
            await self.release_connection(conn)

    async def execute(self, query: str, *args):
        """Execute a query and return the result."""
        conn = await self.get_connection()
        try:
            return await conn.execute(query, *args)
        finally:
            await self.release_connection(conn)

    async def fetch(self, query: str, *args):
        """Execute a query and fetch all rows."""
        conn = await self.get_connection()
        try:
            return await conn.fetch(query, *args)
        finally:
            await self.release_connection(conn)

    async def fetchrow(self, query: str, *args):
        """Execute a query and fetch a single row."""
        conn = await self.get_connection()
        try:
            return await conn.fetchrow(query, *args)
        finally:
            await self.release_connection(conn)

    async def fetchval(self, query: str, *args):
        """Execute a query and fetch a single value."""
        conn = await self.get_connection()
        try:
            return await conn.fetchval(query, *args)
        finally:
            await self.release_connection(conn)
