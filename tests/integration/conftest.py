"""Shared pytest fixtures for integration tests.

These tests run the PostgreSQL repositories against a real database.
Point TEST_DATABASE_URL at a disposable database; every table is
truncated before each test. Without it the integration tests are skipped.
"""

import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from dotenv import load_dotenv

# Load test environment
load_dotenv("test.env")

# Add project root to path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from database.connection import Database
from database.models import AmountType, SourceType
from database.repositories import Repositories

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "")

TABLES = ("execution_jobs", "fetched_events", "copy_records", "copy_configs", "owners")


# ================================================================================
# Database Fixtures
# ================================================================================

@pytest_asyncio.fixture
async def integration_db():
    """Real PostgreSQL database with all tables initialized and emptied."""
    if not TEST_DATABASE_URL:
        pytest.skip("TEST_DATABASE_URL not configured")

    db = Database(TEST_DATABASE_URL, min_size=1, max_size=4)
    await db.initialize()
    try:
        await db.execute(f"TRUNCATE {', '.join(TABLES)} RESTART IDENTITY CASCADE")
        yield db
    finally:
        await db.close()


@pytest_asyncio.fixture
async def pg_repos(integration_db: Database) -> Repositories:
    """PostgreSQL-backed repositories."""
    return Repositories.postgres(integration_db)


@pytest_asyncio.fixture
async def pg_owner(pg_repos: Repositories):
    return await pg_repos.owners.create(
        address="0x1111111111111111111111111111111111111111",
        encrypted_private_key=b"ciphertext",
        encryption_salt=b"salt",
    )


@pytest_asyncio.fixture
async def pg_config(pg_repos: Repositories, pg_owner):
    """An enabled, authorized trade config."""
    return await pg_repos.configs.create(
        pg_owner.id,
        SourceType.TRADE,
        trader_address="0x2222222222222222222222222222222222222222",
        amount_type=AmountType.FIXED,
        buy_amount=10.0,
        sell_amount=10.0,
        max_buy_trades_per_day=2,
        enabled=True,
        authorized=True,
    )


def pytest_collection_modifyitems(config, items):
    """Mark everything under tests/integration as an integration test."""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
