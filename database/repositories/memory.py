"""In-memory repositories with the same interface as the PostgreSQL ones.

Used with ``storage_backend=memory`` for local runs and by the test-suite.
Every method runs without awaiting, so each call is atomic on the event loop
and the conditional updates behave like their SQL counterparts.
"""

import itertools
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

from database.models import (
    AmountType,
    ConfigStatus,
    ConfigWithOwner,
    CopyConfig,
    CopyRecord,
    CopyRecordAggregate,
    ExecutionJob,
    FailureCategory,
    FetchedEvent,
    JobStatus,
    NewCopyRecord,
    Owner,
    RecordStatus,
    RedemptionStatus,
    SourceType,
)
from database.repositories.copy_config_repo import clean_config_fields
from utils.clock import Clock, utc_now


@dataclass
class InMemoryStore:
    """Shared tables for the in-memory repositories."""

    clock: Clock = utc_now
    owners: Dict[int, Owner] = field(default_factory=dict)
    configs: Dict[int, CopyConfig] = field(default_factory=dict)
    records: Dict[int, CopyRecord] = field(default_factory=dict)
    fetched: Dict[Tuple[int, str], FetchedEvent] = field(default_factory=dict)
    jobs: Dict[str, ExecutionJob] = field(default_factory=dict)
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def next_id(self) -> int:
        return next(self._ids)


class InMemoryOwnerRepository:
    """In-memory owner storage."""

    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(
        self,
        address: str,
        signer_address: Optional[str] = None,
        encrypted_private_key: Optional[bytes] = None,
        encryption_salt: Optional[bytes] = None,
    ) -> Owner:
        if await self.get_by_address(address):
            raise ValueError(f"Owner {address} already exists")
        owner = Owner(
            id=self.store.next_id(),
            address=address.lower(),
            signer_address=signer_address,
            encrypted_private_key=encrypted_private_key,
            encryption_salt=encryption_salt,
            api_credentials_encrypted=None,
            api_credentials_salt=None,
            created_at=self.store.clock(),
        )
        self.store.owners[owner.id] = owner
        return replace(owner)

    async def get_by_id(self, owner_id: int) -> Optional[Owner]:
        owner = self.store.owners.get(owner_id)
        return replace(owner) if owner else None

    async def get_by_address(self, address: str) -> Optional[Owner]:
        for owner in self.store.owners.values():
            if owner.address.lower() == address.lower():
                return replace(owner)
        return None

    async def set_api_credentials(self, owner_id: int, encrypted: bytes, salt: bytes) -> None:
        owner = self.store.owners.get(owner_id)
        if owner:
            owner.api_credentials_encrypted = encrypted
            owner.api_credentials_salt = salt


class InMemoryCopyConfigRepository:
    """In-memory copy config storage."""

    def __init__(self, store: InMemoryStore):
        self.store = store

    def _with_owner(self, config: CopyConfig) -> Optional[ConfigWithOwner]:
        owner = self.store.owners.get(config.owner_id)
        if owner is None:
            return None
        return ConfigWithOwner(config=replace(config), owner=replace(owner))

    async def create(self, owner_id: int, source_type: SourceType, **fields) -> CopyConfig:
        values = clean_config_fields(fields)
        address = values.get("trader_address")
        if address:
            values["trader_address"] = address.lower()
            if await self.get_by_owner_and_trader(owner_id, address):
                raise ValueError("Copy config already exists for this trader")
        now = self.store.clock()
        config = CopyConfig(
            id=self.store.next_id(),
            owner_id=owner_id,
            source_type=SourceType(source_type),
            trader_address=values.get("trader_address"),
            signal_categories=list(values.get("signal_categories") or []),
            copy_buys=values.get("copy_buys", True),
            copy_sells=values.get("copy_sells", True),
            amount_type=values.get("amount_type", "fixed"),
            buy_amount=values.get("buy_amount", 0.0),
            sell_amount=values.get("sell_amount", 0.0),
            min_buy_amount=values.get("min_buy_amount"),
            max_buy_amount=values.get("max_buy_amount"),
            min_sell_amount=values.get("min_sell_amount"),
            max_sell_amount=values.get("max_sell_amount"),
            market_categories=list(values.get("market_categories") or []),
            slippage=values.get("slippage", 0.05),
            max_retries=values.get("max_retries", 3),
            max_buy_trades_per_day=values.get("max_buy_trades_per_day"),
            trades_count_today=values.get("trades_count_today", 0),
            last_reset_date=values.get("last_reset_date"),
            start_date=values.get("start_date"),
            duration_days=values.get("duration_days"),
            enabled=values.get("enabled", False),
            authorized=values.get("authorized", False),
            status=values.get("status", "active"),
            created_at=now,
            updated_at=now,
        )
        self._coerce(config)
        self.store.configs[config.id] = config
        return replace(config)

    @staticmethod
    def _coerce(config: CopyConfig) -> None:
        config.amount_type = AmountType(config.amount_type)
        config.status = ConfigStatus(config.status)

    async def get_by_id(self, config_id: int) -> Optional[CopyConfig]:
        config = self.store.configs.get(config_id)
        return replace(config) if config else None

    async def get_with_owner(self, config_id: int) -> Optional[ConfigWithOwner]:
        config = self.store.configs.get(config_id)
        return self._with_owner(config) if config else None

    async def get_by_owner(self, owner_id: int) -> List[CopyConfig]:
        configs = [c for c in self.store.configs.values() if c.owner_id == owner_id]
        configs.sort(key=lambda c: c.created_at, reverse=True)
        return [replace(c) for c in configs]

    async def get_by_owner_and_trader(self, owner_id: int, trader_address: str) -> Optional[CopyConfig]:
        for config in self.store.configs.values():
            if (
                config.owner_id == owner_id
                and config.trader_address
                and config.trader_address.lower() == trader_address.lower()
            ):
                return replace(config)
        return None

    async def get_monitored(self, source_type: SourceType) -> List[ConfigWithOwner]:
        result = []
        for config in sorted(self.store.configs.values(), key=lambda c: c.id):
            if config.source_type == SourceType(source_type) and config.enabled and config.authorized:
                loaded = self._with_owner(config)
                if loaded:
                    result.append(loaded)
        return result

    async def update(self, config_id: int, **fields) -> Optional[CopyConfig]:
        config = self.store.configs.get(config_id)
        if config is None:
            return None
        values = clean_config_fields(fields)
        if values.get("trader_address"):
            values["trader_address"] = values["trader_address"].lower()
        for key, value in values.items():
            setattr(config, key, value)
        self._coerce(config)
        config.updated_at = self.store.clock()
        return replace(config)

    async def delete(self, config_id: int) -> bool:
        if self.store.configs.pop(config_id, None) is None:
            return False
        for record in self.store.records.values():
            if record.config_id == config_id:
                record.config_id = None
        for key in [k for k in self.store.fetched if k[0] == config_id]:
            del self.store.fetched[key]
        return True

    async def auto_pause(self, config_id: int) -> bool:
        config = self.store.configs.get(config_id)
        if config is None or config.status != ConfigStatus.ACTIVE:
            return False
        config.status = ConfigStatus.PAUSED
        config.enabled = False
        config.updated_at = self.store.clock()
        return True

    async def reset_daily_counter(
        self,
        config_id: int,
        expected_last_reset: Optional[datetime],
        now: datetime,
    ) -> bool:
        config = self.store.configs.get(config_id)
        if config is None or config.last_reset_date != expected_last_reset:
            return False
        config.trades_count_today = 0
        config.last_reset_date = now
        config.updated_at = self.store.clock()
        return True

    async def reserve_buy_slot(self, config_id: int) -> bool:
        config = self.store.configs.get(config_id)
        if config is None:
            return False
        limit = config.max_buy_trades_per_day
        if limit is not None and config.trades_count_today >= limit:
            return False
        config.trades_count_today += 1
        return True

    async def release_buy_slot(self, config_id: int) -> None:
        config = self.store.configs.get(config_id)
        if config and config.trades_count_today > 0:
            config.trades_count_today -= 1


class InMemoryCopyRecordRepository:
    """In-memory copy record storage."""

    def __init__(self, store: InMemoryStore):
        self.store = store

    def _aggregate(self, record: CopyRecord) -> CopyRecordAggregate:
        config = self.store.configs.get(record.config_id) if record.config_id is not None else None
        owner = self.store.owners.get(record.owner_id) if record.owner_id is not None else None
        return CopyRecordAggregate(
            record=replace(record),
            config=replace(config) if config else None,
            owner=replace(owner) if owner else None,
        )

    def _update(self, record_id: int, allowed=None, **changes) -> bool:
        record = self.store.records.get(record_id)
        if record is None:
            return False
        if allowed is not None and record.status not in allowed:
            return False
        for key, value in changes.items():
            setattr(record, key, value)
        record.updated_at = self.store.clock()
        return True

    async def create_pending(self, new: NewCopyRecord) -> Optional[CopyRecord]:
        for record in self.store.records.values():
            if record.config_id == new.config_id and record.source_event_id == new.source_event_id:
                return None
        now = self.store.clock()
        record = CopyRecord(
            id=self.store.next_id(),
            config_id=new.config_id,
            owner_id=new.owner_id,
            source_type=SourceType(new.source_type),
            source_event_id=new.source_event_id,
            source_tx_hash=new.source_tx_hash,
            market_id=new.market_id,
            token_id=new.token_id,
            outcome_index=new.outcome_index,
            trade_type=new.trade_type,
            market_slug=new.market_slug,
            event_slug=new.event_slug,
            original_amount=new.original_amount,
            original_price=new.original_price,
            original_shares=new.original_shares,
            copied_amount=0.0,
            copied_price=None,
            copied_shares=None,
            cost_basis=None,
            order_id=None,
            order_status=None,
            settlement_tx_hash=None,
            status=RecordStatus.PENDING,
            error_message=None,
            failure_category=None,
            failure_reason=None,
            submission_attempted_at=None,
            submitted_at=None,
            settled_at=None,
            outcome=None,
            pnl=None,
            resolved_at=None,
            redemption_status=None,
            redemption_tx_hash=None,
            redemption_error=None,
            redemption_attempts=0,
            redeemed_at=None,
            created_at=now,
            updated_at=now,
        )
        self.store.records[record.id] = record
        return replace(record)

    async def get_by_id(self, record_id: int) -> Optional[CopyRecord]:
        record = self.store.records.get(record_id)
        return replace(record) if record else None

    async def get_aggregate(self, record_id: int) -> Optional[CopyRecordAggregate]:
        record = self.store.records.get(record_id)
        return self._aggregate(record) if record else None

    async def get_by_config_and_event(self, config_id: int, source_event_id: str) -> Optional[CopyRecord]:
        for record in self.store.records.values():
            if record.config_id == config_id and record.source_event_id == source_event_id:
                return replace(record)
        return None

    async def get_by_config(self, config_id: int, limit: int = 100) -> List[CopyRecord]:
        records = [r for r in self.store.records.values() if r.config_id == config_id]
        records.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return [replace(r) for r in records[:limit]]

    async def existing_event_ids(self, config_id: int, event_ids: List[str]) -> Set[str]:
        wanted = set(event_ids)
        return {
            r.source_event_id
            for r in self.store.records.values()
            if r.config_id == config_id and r.source_event_id in wanted
        }

    async def save_sizing(
        self,
        record_id: int,
        copied_amount: float,
        copied_price: float,
        copied_shares: float,
        cost_basis: Optional[float],
    ) -> bool:
        record = self.store.records.get(record_id)
        if record is None or record.submission_attempted_at is not None:
            return False
        return self._update(
            record_id,
            allowed=(RecordStatus.PENDING,),
            copied_amount=copied_amount,
            copied_price=copied_price,
            copied_shares=copied_shares,
            cost_basis=cost_basis,
        )

    async def mark_submission_started(self, record_id: int, now: datetime) -> bool:
        record = self.store.records.get(record_id)
        if record is None or record.submission_attempted_at is not None:
            return False
        return self._update(record_id, allowed=(RecordStatus.PENDING,), submission_attempted_at=now)

    async def mark_submitted(
        self,
        record_id: int,
        order_id: str,
        order_status: Optional[str],
        now: datetime,
    ) -> bool:
        return self._update(
            record_id,
            allowed=(RecordStatus.PENDING,),
            status=RecordStatus.PENDING_SETTLEMENT,
            order_id=order_id,
            order_status=order_status,
            submitted_at=now,
        )

    async def mark_skipped(self, record_id: int, reason: str) -> bool:
        return self._update(
            record_id,
            allowed=(RecordStatus.PENDING,),
            status=RecordStatus.SKIPPED,
            error_message=reason,
        )

    async def mark_failed(
        self,
        record_id: int,
        error_message: str,
        failure_category: FailureCategory,
        failure_reason: str,
        from_statuses=(RecordStatus.PENDING,),
    ) -> bool:
        return self._update(
            record_id,
            allowed=tuple(RecordStatus(s) for s in from_statuses),
            status=RecordStatus.FAILED,
            error_message=error_message,
            failure_category=FailureCategory(failure_category),
            failure_reason=failure_reason,
        )

    async def update_order_status(self, record_id: int, order_status: str) -> None:
        self._update(record_id, allowed=(RecordStatus.PENDING_SETTLEMENT,), order_status=order_status)

    async def mark_settled(
        self,
        record_id: int,
        order_status: str,
        copied_price: Optional[float],
        copied_shares: Optional[float],
        settlement_tx_hash: Optional[str],
        now: datetime,
    ) -> bool:
        record = self.store.records.get(record_id)
        if record is None:
            return False
        return self._update(
            record_id,
            allowed=(RecordStatus.PENDING_SETTLEMENT,),
            status=RecordStatus.SETTLED,
            order_status=order_status,
            copied_price=copied_price if copied_price is not None else record.copied_price,
            copied_shares=copied_shares if copied_shares is not None else record.copied_shares,
            settlement_tx_hash=settlement_tx_hash,
            settled_at=now,
        )

    async def get_stale_pending(self, older_than: datetime, limit: int = 100) -> List[CopyRecord]:
        records = [
            r for r in self.store.records.values()
            if r.status == RecordStatus.PENDING
            and r.submission_attempted_at is None
            and r.config_id is not None
            and r.created_at < older_than
        ]
        records.sort(key=lambda r: r.created_at)
        return [replace(r) for r in records[:limit]]

    async def get_pending_settlement(self, limit: int = 100) -> List[CopyRecordAggregate]:
        records = [
            r for r in self.store.records.values()
            if r.status == RecordStatus.PENDING_SETTLEMENT and r.order_id is not None
        ]
        records.sort(key=lambda r: r.id)
        return [self._aggregate(r) for r in records[:limit]]

    async def get_redemption_candidates(self, limit: int, max_attempts: int) -> List[CopyRecordAggregate]:
        candidates = []
        for record in self.store.records.values():
            if record.status != RecordStatus.SETTLED or not record.is_buy:
                continue
            status = record.redemption_status
            retryable = status == RedemptionStatus.FAILED and record.redemption_attempts < max_attempts
            if status in (None, RedemptionStatus.PENDING) or retryable:
                candidates.append(record)

        def order(record: CopyRecord):
            checked, settled = record.redemption_checked_at, record.settled_at
            return (
                checked is not None, checked or datetime.min,
                settled is not None, settled or datetime.min,
                record.id,
            )

        candidates.sort(key=order)
        return [self._aggregate(r) for r in candidates[:limit]]

    async def mark_redemption_checked(self, record_ids: List[int], now: datetime) -> None:
        for record_id in record_ids:
            self._update(record_id, redemption_checked_at=now)

    async def mark_redemption_pending(self, record_id: int) -> bool:
        record = self.store.records.get(record_id)
        if record is None or record.status != RecordStatus.SETTLED:
            return False
        if record.redemption_status == RedemptionStatus.REDEEMED:
            return False
        return self._update(
            record_id,
            redemption_status=RedemptionStatus.PENDING,
            redemption_attempts=record.redemption_attempts + 1,
        )

    async def mark_redeemed(self, record_id: int, tx_hash: Optional[str], now: datetime) -> None:
        self._update(
            record_id,
            redemption_status=RedemptionStatus.REDEEMED,
            redemption_tx_hash=tx_hash,
            redemption_error=None,
            redeemed_at=now,
        )

    async def mark_redemption_failed(self, record_id: int, error: str) -> None:
        self._update(record_id, redemption_status=RedemptionStatus.FAILED, redemption_error=error)

    async def mark_resolved(
        self,
        record_id: int,
        now: datetime,
        outcome: Optional[str] = None,
        pnl: Optional[float] = None,
    ) -> None:
        record = self.store.records.get(record_id)
        if record is None:
            return
        self._update(
            record_id,
            resolved_at=record.resolved_at or now,
            outcome=outcome if outcome is not None else record.outcome,
            pnl=pnl if pnl is not None else record.pnl,
        )

    async def count_by_status(self, config_id: int) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.store.records.values():
            if record.config_id != config_id:
                continue
            counts[record.status.value] = counts.get(record.status.value, 0) + 1
            if record.redemption_status:
                key = f"redemption:{record.redemption_status.value}"
                counts[key] = counts.get(key, 0) + 1
        return counts


class InMemoryFetchedEventRepository:
    """In-memory fetched event ledger."""

    def __init__(self, store: InMemoryStore):
        self.store = store

    async def record_fetched(self, config_id: int, event_ids: List[str]) -> None:
        for event_id in event_ids:
            key = (config_id, event_id)
            if key not in self.store.fetched:
                self.store.fetched[key] = FetchedEvent(
                    id=self.store.next_id(),
                    config_id=config_id,
                    source_event_id=event_id,
                    processed=False,
                    skipped_reason=None,
                    fetched_at=self.store.clock(),
                )

    async def processed_event_ids(self, config_id: int, event_ids: List[str]) -> Set[str]:
        processed = set()
        for event_id in event_ids:
            entry = self.store.fetched.get((config_id, event_id))
            if entry and entry.processed:
                processed.add(event_id)
        return processed

    async def mark_processed(
        self,
        config_id: int,
        source_event_id: str,
        skipped_reason: Optional[str] = None,
    ) -> None:
        await self.record_fetched(config_id, [source_event_id])
        entry = self.store.fetched[(config_id, source_event_id)]
        entry.processed = True
        entry.skipped_reason = skipped_reason
        entry.processed_at = self.store.clock()

    async def get(self, config_id: int, source_event_id: str) -> Optional[FetchedEvent]:
        entry = self.store.fetched.get((config_id, source_event_id))
        return replace(entry) if entry else None


class InMemoryJobRepository:
    """In-memory job broker."""

    def __init__(self, store: InMemoryStore):
        self.store = store

    async def enqueue(self, job: ExecutionJob, replace_finished: bool = False) -> bool:
        existing = self.store.jobs.get(job.id)
        now = self.store.clock()
        if existing is not None:
            if not (replace_finished and existing.status in (JobStatus.DONE, JobStatus.FAILED)):
                return False
            existing.status = JobStatus.QUEUED
            existing.attempts = 0
            existing.available_at = now
            existing.leased_until = None
            existing.last_error = None
            return True
        self.store.jobs[job.id] = replace(
            job,
            status=JobStatus.QUEUED,
            attempts=0,
            available_at=now,
            created_at=now,
        )
        return True

    async def claim(self, lease_seconds: int) -> Optional[ExecutionJob]:
        now = self.store.clock()
        ready = [
            job for job in self.store.jobs.values()
            if (job.status == JobStatus.QUEUED and job.available_at <= now)
            or (job.status == JobStatus.ACTIVE and job.leased_until is not None and job.leased_until < now)
        ]
        if not ready:
            return None
        job = min(ready, key=lambda j: j.available_at)
        job.status = JobStatus.ACTIVE
        job.attempts += 1
        job.leased_until = now + timedelta(seconds=lease_seconds)
        return replace(job)

    async def complete(self, job_id: str) -> None:
        job = self.store.jobs.get(job_id)
        if job:
            job.status = JobStatus.DONE
            job.leased_until = None

    async def retry(self, job_id: str, delay_seconds: float, error: str) -> None:
        job = self.store.jobs.get(job_id)
        if job:
            job.status = JobStatus.QUEUED
            job.leased_until = None
            job.last_error = error
            job.available_at = self.store.clock() + timedelta(seconds=delay_seconds)

    async def fail(self, job_id: str, error: str) -> None:
        job = self.store.jobs.get(job_id)
        if job:
            job.status = JobStatus.FAILED
            job.leased_until = None
            job.last_error = error

    async def get(self, job_id: str) -> Optional[ExecutionJob]:
        job = self.store.jobs.get(job_id)
        return replace(job) if job else None

    async def counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for job in self.store.jobs.values():
            counts[job.status.value] = counts.get(job.status.value, 0) + 1
        return counts
