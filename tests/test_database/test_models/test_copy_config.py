"""Tests for the CopyConfig model.

Covers row conversion and the time-based helpers used by the monitors
and the executor.
"""

from datetime import datetime, timedelta, timezone

import pytest

from database.models import AmountType, ConfigStatus, CopyConfig, SourceType

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestFromRow:
    """Tests for CopyConfig.from_row."""

    def test_from_row(self):
        row = {
            "id": 5,
            "owner_id": 2,
            "source_type": "signal",
            "trader_address": None,
            "signal_categories": ["sports"],
            "copy_buys": True,
            "copy_sells": False,
            "amount_type": "percentageOfOriginal",
            "buy_amount": 50.0,
            "sell_amount": None,
            "min_buy_amount": None,
            "max_buy_amount": 100.0,
            "min_sell_amount": None,
            "max_sell_amount": None,
            "market_categories": None,
            "slippage": 0.05,
            "max_retries": 3,
            "max_buy_trades_per_day": None,
            "trades_count_today": None,
            "last_reset_date": None,
            "start_date": None,
            "duration_days": None,
            "enabled": True,
            "authorized": True,
            "status": "paused",
            "created_at": NOW,
            "updated_at": NOW,
        }

        config = CopyConfig.from_row(row)

        assert config.source_type == SourceType.SIGNAL
        assert config.amount_type == AmountType.PERCENTAGE_OF_ORIGINAL
        assert config.status == ConfigStatus.PAUSED
        assert config.sell_amount == 0.0
        assert config.market_categories == []
        assert config.trades_count_today == 0


class TestDuration:
    """Tests for the duration window."""

    def test_no_duration_never_expires(self, build_config):
        config = build_config(created_at=NOW - timedelta(days=365))
        assert config.duration_expired(NOW) is False

    def test_duration_from_start_date(self, build_config):
        config = build_config(duration_days=2, start_date=NOW - timedelta(days=2), created_at=NOW - timedelta(days=10))
        assert config.duration_expired(NOW) is True

    def test_duration_from_created_at(self, build_config):
        config = build_config(duration_days=2, created_at=NOW - timedelta(days=1))
        assert config.duration_expired(NOW) is False
        assert config.duration_ends_at == NOW + timedelta(days=1)


class TestQuota:
    """Tests for the rolling daily buy quota."""

    def test_no_limit(self, build_config):
        config = build_config(trades_count_today=100, last_reset_date=NOW)
        assert config.quota_reached(NOW) is False

    def test_limit_reached(self, build_config):
        config = build_config(max_buy_trades_per_day=2, trades_count_today=2, last_reset_date=NOW - timedelta(hours=1))
        assert config.quota_reached(NOW) is True

    def test_window_elapsed(self, build_config):
        """A full window since the last reset frees the quota."""
        config = build_config(max_buy_trades_per_day=2, trades_count_today=2, last_reset_date=NOW - timedelta(hours=24))
        assert config.quota_reset_due(NOW) is True
        assert config.quota_reached(NOW) is False

    def test_never_reset(self, build_config):
        config = build_config(max_buy_trades_per_day=2, trades_count_today=2, last_reset_date=None)
        assert config.quota_reset_due(NOW) is True


class TestIneligibilityReason:
    """Tests for CopyConfig.ineligibility_reason."""

    @pytest.mark.parametrize("overrides,reason", [
        ({"enabled": False}, "Copy trading is disabled or not authorized"),
        ({"authorized": False}, "Copy trading is disabled or not authorized"),
        ({"status": ConfigStatus.PAUSED}, "Copy trading is paused"),
        ({"duration_days": 1, "start_date": NOW - timedelta(days=3)}, "Copy trading duration has expired"),
        ({"max_buy_trades_per_day": 1, "trades_count_today": 1, "last_reset_date": NOW},
         "Maximum buy trades per day reached (1/1)"),
    ])
    def test_reasons(self, build_config, overrides, reason):
        config = build_config(**overrides)
        assert config.ineligibility_reason(NOW) == reason

    def test_eligible(self, build_config):
        assert build_config().is_eligible(NOW) is True

    def test_quota_ignored_for_sells(self, build_config):
        config = build_config(max_buy_trades_per_day=1, trades_count_today=1, last_reset_date=NOW)
        assert config.is_eligible(NOW, is_buy=False) is True


class TestHelpers:
    """Tests for smaller helpers."""

    def test_amount_bounds(self, build_config):
        config = build_config(min_buy_amount=1.0, max_buy_amount=5.0, max_sell_amount=3.0)
        assert config.amount_bounds(True) == (1.0, 5.0)
        assert config.amount_bounds(False) == (None, 3.0)

    def test_trade_source_label(self, build_config):
        config = build_config(trader_address="0x1234567890abcdef1234567890abcdef12345678")
        assert config.source_label == "0x1234...5678"

    def test_signal_source_label(self, build_config):
        config = build_config(source_type=SourceType.SIGNAL, trader_address=None, signal_categories=["sports", "crypto"])
        assert config.source_label == "signals:sports,crypto"
