"""Tests for copy config lifecycle upkeep."""

from datetime import timedelta

import pytest

from database.models import ConfigStatus
from services.config_lifecycle import ConfigLifecycle


class TestConfigLifecycle:
    """Tests for ConfigLifecycle.revalidate."""

    @pytest.mark.asyncio
    async def test_active_config_is_returned(self, repos, make_config, clock):
        config = await make_config()
        lifecycle = ConfigLifecycle(repos.configs, clock)

        fresh = await lifecycle.revalidate(config)

        assert fresh is not None
        assert fresh.id == config.id

    @pytest.mark.asyncio
    async def test_expired_duration_auto_pauses(self, repos, make_config, clock):
        """A config past its duration is paused and not monitored."""
        config = await make_config(duration_days=1, start_date=clock() - timedelta(days=2))
        lifecycle = ConfigLifecycle(repos.configs, clock)

        assert await lifecycle.revalidate(config) is None

        stored = await repos.configs.get_by_id(config.id)
        assert stored.status == ConfigStatus.PAUSED
        assert stored.enabled is False

    @pytest.mark.asyncio
    async def test_auto_pause_is_applied_once(self, repos, make_config, clock):
        """Concurrent revalidation pauses the config exactly once."""
        config = await make_config(duration_days=1, start_date=clock() - timedelta(days=2))
        lifecycle = ConfigLifecycle(repos.configs, clock)

        await lifecycle.revalidate(config)
        assert await repos.configs.auto_pause(config.id) is False

    @pytest.mark.asyncio
    async def test_quota_reset_after_window(self, repos, make_config, clock):
        """The daily buy counter resets 24 hours after the last reset."""
        config = await make_config(
            max_buy_trades_per_day=3,
            trades_count_today=3,
            last_reset_date=clock() - timedelta(hours=25),
        )
        lifecycle = ConfigLifecycle(repos.configs, clock)

        fresh = await lifecycle.revalidate(config)

        assert fresh.trades_count_today == 0
        assert fresh.last_reset_date == clock()

    @pytest.mark.asyncio
    async def test_quota_not_reset_inside_window(self, repos, make_config, clock):
        config = await make_config(
            max_buy_trades_per_day=3,
            trades_count_today=2,
            last_reset_date=clock() - timedelta(hours=3),
        )
        lifecycle = ConfigLifecycle(repos.configs, clock)

        fresh = await lifecycle.revalidate(config)

        assert fresh.trades_count_today == 2

    @pytest.mark.asyncio
    async def test_stale_reset_is_not_applied_twice(self, repos, make_config, clock):
        """A reset conditioned on an old last_reset_date is a no-op."""
        old_reset = clock() - timedelta(hours=25)
        config = await make_config(max_buy_trades_per_day=3, trades_count_today=3, last_reset_date=old_reset)

        assert await repos.configs.reset_daily_counter(config.id, old_reset, clock()) is True
        await repos.configs.reserve_buy_slot(config.id)
        assert await repos.configs.reset_daily_counter(config.id, old_reset, clock()) is False

        stored = await repos.configs.get_by_id(config.id)
        assert stored.trades_count_today == 1

    @pytest.mark.asyncio
    async def test_paused_config_is_skipped(self, repos, make_config, clock):
        config = await make_config(status=ConfigStatus.PAUSED)
        lifecycle = ConfigLifecycle(repos.configs, clock)

        assert await lifecycle.revalidate(config) is None
