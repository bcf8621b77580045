"""Scheduled copy config upkeep: duration auto-pause and daily quota reset."""

import logging
from dataclasses import replace
from typing import Optional

from database.models import ConfigStatus, CopyConfig
from utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


class ConfigLifecycle:
    """Applies time-based state changes to copy configs.

    Every write is conditional, so two workers revalidating the same config
    concurrently apply each change at most once.
    """

    def __init__(self, config_repo, clock: Clock = utc_now):
        self.config_repo = config_repo
        self.clock = clock

    async def revalidate(self, config: CopyConfig) -> Optional[CopyConfig]:
        """
        Bring a config up to date before it is used.

        Args:
            config: Config as loaded by the caller

        Returns:
            The refreshed config, or None when it was auto-paused and must
            not be monitored this cycle
        """
        now = self.clock()

        if config.duration_expired(now):
            if await self.config_repo.auto_pause(config.id):
                logger.info(f"Config {config.id} auto-paused: copy trading duration has expired")
            return None

        if config.max_buy_trades_per_day and config.quota_reset_due(now):
            if await self.config_repo.reset_daily_counter(config.id, config.last_reset_date, now):
                logger.info(f"Config {config.id} daily buy counter reset")
            fresh = await self.config_repo.get_by_id(config.id)
            if fresh is None:
                return None
            config = fresh

        if config.status != ConfigStatus.ACTIVE:
            return None
        return replace(config)
