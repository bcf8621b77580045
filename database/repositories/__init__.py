from dataclasses import dataclass
from typing import Any, Optional

from database.connection import Database

from .owner_repo import OwnerRepository
from .copy_config_repo import CopyConfigRepository
from .copy_record_repo import CopyRecordRepository
from .fetched_event_repo import FetchedEventRepository
from .job_repo import JobRepository
from .memory import (
    InMemoryCopyConfigRepository,
    InMemoryCopyRecordRepository,
    InMemoryFetchedEventRepository,
    InMemoryJobRepository,
    InMemoryOwnerRepository,
    InMemoryStore,
)


@dataclass
class Repositories:
    """Repository set shared by the pipeline components."""

    owners: Any
    configs: Any
    records: Any
    events: Any
    jobs: Any
    store: Optional[InMemoryStore] = None

    @classmethod
    def postgres(cls, db: Database) -> "Repositories":
        """Build repositories backed by PostgreSQL."""
        return cls(
            owners=OwnerRepository(db),
            configs=CopyConfigRepository(db),
            records=CopyRecordRepository(db),
            events=FetchedEventRepository(db),
            jobs=JobRepository(db),
        )

    @classmethod
    def in_memory(cls, store: Optional[InMemoryStore] = None) -> "Repositories":
        """Build repositories backed by process memory."""
        store = store or InMemoryStore()
        return cls(
            owners=InMemoryOwnerRepository(store),
            configs=InMemoryCopyConfigRepository(store),
            records=InMemoryCopyRecordRepository(store),
            events=InMemoryFetchedEventRepository(store),
            jobs=InMemoryJobRepository(store),
            store=store,
        )


__all__ = [
    "Repositories",
    "OwnerRepository",
    "CopyConfigRepository",
    "CopyRecordRepository",
    "FetchedEventRepository",
    "JobRepository",
    "InMemoryStore",
    "InMemoryOwnerRepository",
    "InMemoryCopyConfigRepository",
    "InMemoryCopyRecordRepository",
    "InMemoryFetchedEventRepository",
    "InMemoryJobRepository",
]
