"""Copy record model."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from database.models.copy_config import CopyConfig, SourceType
from database.models.owner import Owner


class TradeType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class RecordStatus(str, Enum):
    PENDING = "pending"
    SKIPPED = "skipped"
    PENDING_SETTLEMENT = "pending-settlement"
    SETTLED = "settled"
    FAILED = "failed"


class RedemptionStatus(str, Enum):
    PENDING = "pending"
    REDEEMED = "redeemed"
    FAILED = "failed"


class FailureCategory(str, Enum):
    BALANCE = "balance"
    VALIDATION = "validation"
    MARKET = "market"
    EXECUTION = "execution"
    OTHER = "other"


# Records the executor may still act on
OPEN_STATUSES = (RecordStatus.PENDING,)
TERMINAL_STATUSES = (RecordStatus.SKIPPED, RecordStatus.SETTLED, RecordStatus.FAILED)


@dataclass
class NewCopyRecord:
    """Fields captured by a monitor when it accepts a source event."""

    config_id: int
    owner_id: int
    source_type: SourceType
    source_event_id: str
    market_id: str
    outcome_index: int
    trade_type: TradeType
    original_amount: float
    original_price: float
    original_shares: Optional[float] = None
    token_id: Optional[str] = None
    market_slug: Optional[str] = None
    event_slug: Optional[str] = None
    source_tx_hash: Optional[str] = None


@dataclass
class CopyRecord:
    """One attempt to mirror one source event for one config."""

    id: int
    config_id: Optional[int]
    owner_id: Optional[int]
    source_type: SourceType
    source_event_id: str
    source_tx_hash: Optional[str]
    market_id: str
    token_id: Optional[str]
    outcome_index: int
    trade_type: TradeType
    market_slug: Optional[str]
    event_slug: Optional[str]
    original_amount: float
    original_price: float
    original_shares: Optional[float]
    copied_amount: float
    copied_price: Optional[float]
    copied_shares: Optional[float]
    cost_basis: Optional[float]
    order_id: Optional[str]
    order_status: Optional[str]
    settlement_tx_hash: Optional[str]
    status: RecordStatus
    error_message: Optional[str]
    failure_category: Optional[FailureCategory]
    failure_reason: Optional[str]
    submission_attempted_at: Optional[datetime]
    submitted_at: Optional[datetime]
    settled_at: Optional[datetime]
    outcome: Optional[str]
    pnl: Optional[float]
    resolved_at: Optional[datetime]
    redemption_status: Optional[RedemptionStatus]
    redemption_tx_hash: Optional[str]
    redemption_error: Optional[str]
    redemption_attempts: int
    redeemed_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime] = None
    redemption_checked_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "CopyRecord":
        """Create CopyRecord from database row."""
        return cls(
            id=row["id"],
            config_id=row["config_id"],
            owner_id=row["owner_id"],
            source_type=SourceType(row["source_type"]),
            source_event_id=row["source_event_id"],
            source_tx_hash=row["source_tx_hash"],
            market_id=row["market_id"],
            token_id=row["token_id"],
            outcome_index=row["outcome_index"],
            trade_type=TradeType(row["trade_type"]),
            market_slug=row["market_slug"],
            event_slug=row["event_slug"],
            original_amount=row["original_amount"],
            original_price=row["original_price"],
            original_shares=row["original_shares"],
            copied_amount=row["copied_amount"] or 0.0,
            copied_price=row["copied_price"],
            copied_shares=row["copied_shares"],
            cost_basis=row["cost_basis"],
            order_id=row["order_id"],
            order_status=row["order_status"],
            settlement_tx_hash=row["settlement_tx_hash"],
            status=RecordStatus(row["status"]),
            error_message=row["error_message"],
            failure_category=FailureCategory(row["failure_category"]) if row["failure_category"] else None,
            failure_reason=row["failure_reason"],
            submission_attempted_at=row["submission_attempted_at"],
            submitted_at=row["submitted_at"],
            settled_at=row["settled_at"],
            outcome=row["outcome"],
            pnl=row["pnl"],
            resolved_at=row["resolved_at"],
            redemption_status=RedemptionStatus(row["redemption_status"]) if row["redemption_status"] else None,
            redemption_tx_hash=row["redemption_tx_hash"],
            redemption_error=row["redemption_error"],
            redemption_attempts=row["redemption_attempts"] or 0,
            redeemed_at=row["redeemed_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            redemption_checked_at=row["redemption_checked_at"],
        )

    @property
    def is_buy(self) -> bool:
        return self.trade_type == TradeType.BUY

    @property
    def is_terminal(self) -> bool:
        """Check if the executor and settlement monitor are done with this record."""
        return self.status in TERMINAL_STATUSES

    @property
    def was_submitted(self) -> bool:
        """Check if a venue submission was started for this record."""
        return self.submission_attempted_at is not None or self.order_id is not None


@dataclass
class CopyRecordAggregate:
    """Copy record loaded together with its config and owner."""

    record: CopyRecord
    config: Optional[CopyConfig]
    owner: Optional[Owner]
