"""Copy configuration model."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from config.constants import QUOTA_WINDOW_HOURS
from database.models.owner import Owner


class SourceType(str, Enum):
    TRADE = "trade"
    SIGNAL = "signal"


class AmountType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    PERCENTAGE_OF_ORIGINAL = "percentageOfOriginal"


class ConfigStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DISABLED = "disabled"


@dataclass
class CopyConfig:
    """Standing rule for mirroring a source trader or signal categories."""

    id: int
    owner_id: int
    source_type: SourceType
    trader_address: Optional[str]
    signal_categories: List[str]
    copy_buys: bool
    copy_sells: bool
    amount_type: AmountType
    buy_amount: float
    sell_amount: float
    min_buy_amount: Optional[float]
    max_buy_amount: Optional[float]
    min_sell_amount: Optional[float]
    max_sell_amount: Optional[float]
    market_categories: List[str]
    slippage: float
    max_retries: int
    max_buy_trades_per_day: Optional[int]
    trades_count_today: int
    last_reset_date: Optional[datetime]
    start_date: Optional[datetime]
    duration_days: Optional[int]
    enabled: bool
    authorized: bool
    status: ConfigStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "CopyConfig":
        """Create CopyConfig from database row."""
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            source_type=SourceType(row["source_type"]),
            trader_address=row["trader_address"],
            signal_categories=list(row["signal_categories"] or []),
            copy_buys=bool(row["copy_buys"]),
            copy_sells=bool(row["copy_sells"]),
            amount_type=AmountType(row["amount_type"]),
            buy_amount=row["buy_amount"] or 0.0,
            sell_amount=row["sell_amount"] or 0.0,
            min_buy_amount=row["min_buy_amount"],
            max_buy_amount=row["max_buy_amount"],
            min_sell_amount=row["min_sell_amount"],
            max_sell_amount=row["max_sell_amount"],
            market_categories=list(row["market_categories"] or []),
            slippage=row["slippage"],
            max_retries=row["max_retries"],
            max_buy_trades_per_day=row["max_buy_trades_per_day"],
            trades_count_today=row["trades_count_today"] or 0,
            last_reset_date=row["last_reset_date"],
            start_date=row["start_date"],
            duration_days=row["duration_days"],
            enabled=bool(row["enabled"]),
            authorized=bool(row["authorized"]),
            status=ConfigStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @property
    def duration_ends_at(self) -> Optional[datetime]:
        """Get the end of the duration window, if one is set."""
        if not self.duration_days:
            return None
        start = self.start_date or self.created_at
        return start + timedelta(days=self.duration_days)

    def duration_expired(self, now: datetime) -> bool:
        """Check whether the duration window has elapsed."""
        ends_at = self.duration_ends_at
        return ends_at is not None and now >= ends_at

    def quota_reset_due(self, now: datetime) -> bool:
        """Check whether the rolling daily buy counter should be reset."""
        if self.last_reset_date is None:
            return True
        return now - self.last_reset_date >= timedelta(hours=QUOTA_WINDOW_HOURS)

    def quota_reached(self, now: datetime) -> bool:
        """Check whether the daily buy quota is used up for the current window."""
        if not self.max_buy_trades_per_day:
            return False
        if self.quota_reset_due(now):
            return False
        return self.trades_count_today >= self.max_buy_trades_per_day

    def ineligibility_reason(self, now: datetime, is_buy: bool = True) -> Optional[str]:
        """
        Get the reason this config may not execute right now.

        Args:
            now: Current time
            is_buy: Whether the pending trade is a buy (quota only limits buys)

        Returns:
            Human-readable reason, or None when execution is permitted
        """
        if not (self.enabled and self.authorized):
            return "Copy trading is disabled or not authorized"
        if self.status != ConfigStatus.ACTIVE:
            return f"Copy trading is {self.status.value}"
        if self.duration_expired(now):
            return "Copy trading duration has expired"
        if is_buy and self.quota_reached(now):
            return (
                f"Maximum buy trades per day reached "
                f"({self.trades_count_today}/{self.max_buy_trades_per_day})"
            )
        return None

    def is_eligible(self, now: datetime, is_buy: bool = True) -> bool:
        return self.ineligibility_reason(now, is_buy) is None

    def amount_bounds(self, is_buy: bool):
        """Get the (min, max) clamp for one side."""
        if is_buy:
            return self.min_buy_amount, self.max_buy_amount
        return self.min_sell_amount, self.max_sell_amount

    @property
    def source_label(self) -> str:
        """Get a short label for the configured source."""
        if self.source_type == SourceType.SIGNAL:
            return "signals:" + ",".join(self.signal_categories or ["all"])
        address = self.trader_address or ""
        return f"{address[:6]}...{address[-4:]}"


@dataclass
class ConfigWithOwner:
    """Copy config loaded together with its owner."""

    config: CopyConfig
    owner: Owner
