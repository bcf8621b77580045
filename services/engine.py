"""Wiring of the copy pipeline."""

import logging
from typing import Optional

from config import settings
from core.blockchain.balance import BalanceService
from core.polymarket import (
    ClobClientCache,
    DataApiClient,
    GammaMarketClient,
    PolymarketRedemptionVenue,
    PolymarketRelayer,
    PolymarketVenue,
    PublicCLOB,
    SignalFeedClient,
    make_clob_factory,
)
from core.wallet.encryption import KeyEncryption
from database.connection import Database
from database.repositories import Repositories
from jobs.scheduler import JobManager, PeriodicJob
from services.activity_monitor import SignalMonitor, TradeMonitor
from services.copy_config_service import CopyConfigService
from services.execution_queue import ExecutionQueue
from services.executor import CopyExecutor
from services.recovery import RecoveryService
from services.redemption_scanner import RedemptionScanner
from services.settlement_monitor import SettlementMonitor
from utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)


class CopyEngine:
    """
    Owns the pipeline components and their lifecycle.

    Monitors and the redemption scanner run as scheduled jobs, the executor
    as the execution queue's worker pool, and settlement watches as detached
    tasks.
    """

    def __init__(
        self,
        repos: Repositories,
        venue,
        redemption_venue,
        balances,
        gamma,
        data_client,
        signal_client,
        clients: Optional[ClobClientCache] = None,
        db: Optional[Database] = None,
        clock: Clock = utc_now,
    ):
        self.repos = repos
        self.db = db
        self.venue = venue
        self.redemption_venue = redemption_venue
        self.gamma = gamma
        self.data_client = data_client
        self.signal_client = signal_client
        self.clients = clients
        self.clock = clock

        self.settlement = SettlementMonitor(repos.records, venue, clock=clock)
        self.executor = CopyExecutor(repos, venue, balances, self.settlement, clock=clock)
        self.queue = ExecutionQueue(
            repos.jobs, handler=self.executor.handle_job, on_exhausted=self.executor.handle_exhausted,
        )
        self.trade_monitor = TradeMonitor(
            repos, self.queue, gamma, venue, balances, data_client=data_client, clock=clock,
        )
        self.signal_monitor = SignalMonitor(
            repos, self.queue, gamma, venue, balances, signal_client=signal_client, clock=clock,
        )
        self.redemption = RedemptionScanner(repos.records, gamma, redemption_venue, clock=clock)
        self.recovery = RecoveryService(repos.records, self.queue, self.settlement, clock=clock)
        self.configs = CopyConfigService(repos.configs, repos.records, clock=clock)
        self.jobs = JobManager()

    @classmethod
    async def create(cls) -> "CopyEngine":
        """
        Build the engine from settings.

        Raises:
            ValueError: If the storage backend is unknown
        """
        db = None
        if settings.storage_backend == "postgres":
            db = Database(settings.database_url)
            await db.initialize()
            repos = Repositories.postgres(db)
        elif settings.storage_backend == "memory":
            logger.warning("Using in-memory storage; state is lost on restart")
            repos = Repositories.in_memory()
        else:
            raise ValueError(f"Unknown storage backend: {settings.storage_backend}")

        gamma = GammaMarketClient()
        clients = ClobClientCache(
            make_clob_factory(KeyEncryption(settings.master_encryption_key), repos.owners),
        )
        return cls(
            repos=repos,
            venue=PolymarketVenue(clients, gamma=gamma, public=PublicCLOB()),
            redemption_venue=PolymarketRedemptionVenue(PolymarketRelayer()),
            balances=BalanceService(),
            gamma=gamma,
            data_client=DataApiClient(),
            signal_client=SignalFeedClient(),
            clients=clients,
            db=db,
        )

    async def refresh_clients(self) -> int:
        if self.clients is None:
            return 0
        return self.clients.evict_expired()

    def register_jobs(self) -> None:
        self.jobs.add(PeriodicJob(
            id="trade_monitor",
            name="trade monitor",
            callback=self.trade_monitor.run_cycle,
            interval_seconds=settings.trade_monitor_interval,
        ))
        if settings.signals_enabled:
            self.jobs.add(PeriodicJob(
                id="signal_monitor",
                name="signal monitor",
                callback=self.signal_monitor.run_cycle,
                interval_seconds=settings.signal_monitor_interval,
            ))
        else:
            logger.info("Signal feed not configured, signal monitor disabled")
        self.jobs.add(PeriodicJob(
            id="redemption",
            name="redemption scan",
            callback=self.redemption.scan,
            interval_seconds=settings.redemption_interval,
        ))
        self.jobs.add(PeriodicJob(
            id="recovery",
            name="pending record recovery",
            callback=self.recovery.run,
            interval_seconds=settings.recovery_interval,
        ))
        self.jobs.add(PeriodicJob(
            id="client_cache",
            name="CLOB client cache refresh",
            callback=self.refresh_clients,
            interval_seconds=settings.client_cache_refresh_interval,
            run_immediately=False,
        ))

    async def start(self) -> None:
        """Start the worker pool and the scheduled jobs."""
        self.queue.start()
        self.register_jobs()
        self.jobs.start()
        logger.info("Copy engine started")

    async def stop(self) -> None:
        """Stop scheduling, drain workers and close clients."""
        self.jobs.stop()
        await self.queue.stop()
        await self.settlement.stop()
        relayer = getattr(self.redemption_venue, "relayer", None)
        for client in (self.gamma, self.data_client, self.signal_client, relayer):
            close = getattr(client, "close", None)
            if close is not None:
                await close()
        if self.db is not None:
            await self.db.close()
        logger.info("Copy engine stopped")
