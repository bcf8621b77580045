"""Activity monitors: detect source events and turn them into pending copies."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from config import settings
from core.polymarket.data_client import SourceEvent
from database.models import AmountType, ConfigWithOwner, CopyConfig, NewCopyRecord, Owner, SourceType
from services.category_inference import infer_categories, matches_category
from services.config_lifecycle import ConfigLifecycle
from services.execution_queue import BrokerUnavailableError
from services.position_sizer import required_sell_shares
from utils.clock import Clock, utc_now
from utils.user_logger import owner_logger

logger = logging.getLogger(__name__)


@dataclass
class MonitorResult:
    """Counters for one config in one monitor cycle."""
    config_id: int
    fetched: int = 0
    duplicates: int = 0
    skipped: int = 0
    queued: int = 0
    not_queued: int = 0
    deferred: int = 0
    paused: bool = False
    error: Optional[str] = None


class ActivityMonitor:
    """
    Base monitor for one source type.

    Each cycle loads every enabled and authorized config, brings its
    lifecycle state up to date, fetches events newer than the config,
    filters them and persists a pending copy record plus an execution job
    for every event that passes.
    """

    source_type: SourceType

    def __init__(
        self,
        repos,
        queue,
        gamma,
        venue,
        balances,
        clock: Clock = utc_now,
        max_events_per_cycle: Optional[int] = None,
        check_orderbook: Optional[bool] = None,
    ):
        self.configs = repos.configs
        self.records = repos.records
        self.events = repos.events
        self.queue = queue
        self.gamma = gamma
        self.venue = venue
        self.balances = balances
        self.clock = clock
        self.lifecycle = ConfigLifecycle(repos.configs, clock)
        self.max_events = max_events_per_cycle or settings.max_events_per_cycle
        self.check_orderbook = settings.check_orderbook if check_orderbook is None else check_orderbook

    async def fetch_events(self, config: CopyConfig) -> List[SourceEvent]:
        """Fetch source events newer than the config's creation time."""
        raise NotImplementedError

    async def prepare_cycle(self, configs: List[ConfigWithOwner]) -> None:
        """Hook run once per cycle before configs are processed."""

    async def run_cycle(self) -> List[MonitorResult]:
        """
        Run one monitor cycle over all monitored configs.

        Errors are isolated per config.
        """
        configs = await self.configs.get_monitored(self.source_type)
        if not configs:
            return []

        await self.prepare_cycle(configs)

        results = []
        for loaded in configs:
            try:
                result = await self.process_config(loaded)
            except Exception as e:
                logger.error(
                    f"{self.source_type.value} monitor failed for config {loaded.config.id}: {e}",
                    exc_info=True,
                )
                result = MonitorResult(config_id=loaded.config.id, error=str(e))
            results.append(result)

        queued = sum(r.queued for r in results)
        if queued:
            logger.info(f"{self.source_type.value} monitor queued {queued} copies across {len(results)} configs")
        return results

    async def process_config(self, loaded: ConfigWithOwner) -> MonitorResult:
        """Detect, filter and persist new events for one config."""
        result = MonitorResult(config_id=loaded.config.id)
        owner = loaded.owner
        log = owner_logger(logger, owner)

        config = await self.lifecycle.revalidate(loaded.config)
        if config is None:
            result.paused = True
            return result

        events = await self.fetch_events(config)
        events = sorted(events, key=lambda e: e.timestamp, reverse=True)
        result.fetched = len(events)
        if not events:
            return result

        event_ids = [e.event_id for e in events]
        seen = await self.records.existing_event_ids(config.id, event_ids)
        seen |= await self.events.processed_event_ids(config.id, event_ids)

        fresh = [e for e in events if e.event_id not in seen]
        result.duplicates = len(events) - len(fresh)
        batch = fresh[:self.max_events]
        result.deferred = len(fresh) - len(batch)
        if not batch:
            return result

        await self.events.record_fetched(config.id, [e.event_id for e in batch])

        for event in batch:
            reason = await self.filter_event(config, owner, event)
            if reason:
                await self.events.mark_processed(config.id, event.event_id, reason)
                log.debug(f"Config {config.id}: skipping {event.event_id}: {reason}")
                result.skipped += 1
                continue

            record = await self.records.create_pending(self._new_record(config, owner, event))
            await self.events.mark_processed(config.id, event.event_id)
            if record is None:
                # Another tick created it first
                result.duplicates += 1
                continue

            try:
                await self.queue.enqueue(
                    self.source_type,
                    record_id=record.id,
                    config_id=config.id,
                    source_event_id=event.event_id,
                )
                result.queued += 1
            except BrokerUnavailableError as e:
                log.warning(f"Config {config.id}: record {record.id} created but not queued: {e}")
                result.not_queued += 1

        if result.queued or result.skipped or result.not_queued:
            log.info(
                f"Config {config.id} ({config.source_label}): queued {result.queued}, "
                f"skipped {result.skipped}, unqueued {result.not_queued}, "
                f"duplicates {result.duplicates}, deferred {result.deferred}"
            )
        return result

    async def filter_event(self, config: CopyConfig, owner: Owner, event: SourceEvent) -> Optional[str]:
        """
        Apply the per-event filters in order.

        Returns:
            Skip reason, or None if the event should be copied
        """
        if event.is_buy and not config.copy_buys:
            return "buy trades are not copied"
        if not event.is_buy and not config.copy_sells:
            return "sell trades are not copied"

        policy_value = config.buy_amount if event.is_buy else config.sell_amount
        if not policy_value or policy_value <= 0:
            return f"no {event.side.value} amount configured"
        if config.amount_type != AmountType.FIXED and policy_value > 100:
            return f"{event.side.value} percentage {policy_value} is above 100"
        if event.amount <= 0 and not event.shares:
            return f"invalid trade amount {event.amount}"

        if config.market_categories and not matches_category(event.category_hint, config.market_categories):
            inferred = infer_categories(event.category_hint)
            inferred_text = f" (inferred: {', '.join(inferred)})" if inferred else ""
            return f'category "{event.category_hint}"{inferred_text} not in allowed categories'

        if not event.market_slug:
            event.market_slug = await self.gamma.find_slug(event.market_id)
        if not event.market_slug:
            return f"market slug unknown for {event.market_id}"
        if not await self.gamma.is_open(event.market_slug):
            return f"market {event.market_slug} is closed or not accepting orders"

        if self.check_orderbook and event.token_id:
            exists = await self.venue.has_orderbook(event.token_id)
            if exists is False:
                return f"orderbook does not exist for token {event.token_id}"

        if not event.is_buy and event.token_id:
            return await self._check_sell_balance(config, owner, event)

        return None

    async def _check_sell_balance(self, config: CopyConfig, owner: Owner, event: SourceEvent) -> Optional[str]:
        required = required_sell_shares(config, event.amount, event.price, event.shares)
        if required <= 0:
            return None
        try:
            available = await self.balances.get_outcome_token_balance(owner.funder_address, event.token_id)
        except Exception as e:
            # The executor re-checks the balance before submitting
            logger.warning(f"Could not check token balance for sell {event.event_id}: {e}")
            return None
        if available < required:
            return (
                f"insufficient token balance. Required: {required} shares, "
                f"Available: {available} shares"
            )
        return None

    def _new_record(self, config: CopyConfig, owner: Owner, event: SourceEvent) -> NewCopyRecord:
        return NewCopyRecord(
            config_id=config.id,
            owner_id=owner.id,
            source_type=self.source_type,
            source_event_id=event.event_id,
            market_id=event.market_id,
            outcome_index=event.outcome_index,
            trade_type=event.side,
            original_amount=event.amount,
            original_price=event.price,
            original_shares=event.shares,
            token_id=event.token_id,
            market_slug=event.market_slug,
            event_slug=event.event_slug,
            source_tx_hash=event.tx_hash,
        )


class TradeMonitor(ActivityMonitor):
    """Mirrors trades made by a followed trader."""

    source_type = SourceType.TRADE

    def __init__(self, repos, queue, gamma, venue, balances, data_client, **kwargs):
        super().__init__(repos, queue, gamma, venue, balances, **kwargs)
        self.data_client = data_client

    async def fetch_events(self, config: CopyConfig) -> List[SourceEvent]:
        if not config.trader_address:
            return []
        return await self.data_client.fetch_trader_activity(config.trader_address, since=config.created_at)


class SignalMonitor(ActivityMonitor):
    """Mirrors signals from the external feed in the config's categories."""

    source_type = SourceType.SIGNAL

    def __init__(self, repos, queue, gamma, venue, balances, signal_client, **kwargs):
        super().__init__(repos, queue, gamma, venue, balances, **kwargs)
        self.signal_client = signal_client
        self._signals: List[SourceEvent] = []

    async def prepare_cycle(self, configs: List[ConfigWithOwner]) -> None:
        """Fetch the feed once for every config in the cycle."""
        self._signals = []
        if not self.signal_client.is_configured():
            logger.warning("Signal feed URL not configured, skipping signal fetch")
            return

        categories = sorted({c for loaded in configs for c in loaded.config.signal_categories})
        since = min(loaded.config.created_at for loaded in configs)
        try:
            self._signals = await self.signal_client.fetch_signals(categories, since)
        except Exception as e:
            logger.error(f"Signal feed fetch failed: {e}")

    async def fetch_events(self, config: CopyConfig) -> List[SourceEvent]:
        wanted = {c.lower() for c in config.signal_categories}
        return [
            signal for signal in self._signals
            if (signal.category or "").lower() in wanted and signal.timestamp >= config.created_at
        ]
