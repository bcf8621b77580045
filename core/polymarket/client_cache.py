"""Per-owner CLOB client cache."""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional

from config import settings
from core.polymarket.clob_client import PolymarketCLOB
from core.wallet.encryption import KeyEncryption
from database.models import Owner
from utils.clock import Clock, utc_now

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Owner], Awaitable[PolymarketCLOB]]


@dataclass
class _CacheEntry:
    client: PolymarketCLOB
    created_at: datetime


def make_clob_factory(
    encryption: KeyEncryption,
    owner_repo=None,
) -> ClientFactory:
    """
    Build a factory that creates authenticated CLOB clients for owners.

    Stored API credentials are reused; otherwise they are derived from the
    owner's key and, when an owner repository is given, stored encrypted.
    """

    async def create(owner: Owner) -> PolymarketCLOB:
        if not owner.encrypted_private_key or not owner.encryption_salt:
            raise ValueError(f"Owner {owner.short_address} has no signing key")

        private_key = encryption.decrypt(owner.encrypted_private_key, owner.encryption_salt)
        client = PolymarketCLOB(private_key=private_key, funder_address=owner.funder_address)

        if owner.has_api_credentials:
            creds = encryption.decrypt_json(owner.api_credentials_encrypted, owner.api_credentials_salt)
            client.set_api_credentials(
                api_key=creds["api_key"],
                api_secret=creds["api_secret"],
                api_passphrase=creds["api_passphrase"],
            )
            return client

        await client.initialize()
        if owner_repo is not None and client.api_credentials:
            encrypted, salt = encryption.encrypt_json(client.api_credentials)
            await owner_repo.set_api_credentials(owner.id, encrypted, salt)
        return client

    return create


class ClobClientCache:
    """
    Cache of authenticated CLOB clients keyed by owner.

    Entries expire after a TTL and the cache is bounded in size, evicting the
    least recently used owner. Concurrent requests for the same owner share
    one in-flight creation.
    """

    def __init__(
        self,
        factory: ClientFactory,
        ttl_seconds: Optional[int] = None,
        max_size: Optional[int] = None,
        clock: Clock = utc_now,
    ):
        self._factory = factory
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.client_cache_ttl)
        self.max_size = max_size if max_size is not None else settings.client_cache_max_size
        self._clock = clock
        self._entries: "OrderedDict[int, _CacheEntry]" = OrderedDict()
        self._pending: Dict[int, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _is_expired(self, entry: _CacheEntry) -> bool:
        return self._clock() - entry.created_at >= self.ttl

    async def get(self, owner: Owner) -> PolymarketCLOB:
        """
        Get the client for an owner, creating it if missing or expired.

        Raises:
            Exception: Whatever the factory raised when creation failed
        """
        entry = self._entries.get(owner.id)
        if entry is not None and not self._is_expired(entry):
            self._entries.move_to_end(owner.id)
            return entry.client
        return await self._create(owner)

    async def refresh(self, owner: Owner) -> PolymarketCLOB:
        """Force recreation of an owner's client."""
        self.invalidate(owner.id)
        return await self._create(owner)

    def invalidate(self, owner_id: int) -> None:
        self._entries.pop(owner_id, None)

    def evict_expired(self) -> int:
        """
        Drop expired entries.

        Returns:
            Number of entries removed
        """
        expired = [owner_id for owner_id, entry in self._entries.items() if self._is_expired(entry)]
        for owner_id in expired:
            del self._entries[owner_id]
        if expired:
            logger.info(f"Evicted {len(expired)} expired CLOB clients")
        return len(expired)

    async def _create(self, owner: Owner) -> PolymarketCLOB:
        task = self._pending.get(owner.id)
        if task is None:
            task = asyncio.ensure_future(self._factory(owner))
            self._pending[owner.id] = task
            task.add_done_callback(lambda _: self._pending.pop(owner.id, None))

        client = await asyncio.shield(task)

        self._entries[owner.id] = _CacheEntry(client=client, created_at=self._clock())
        self._entries.move_to_end(owner.id)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted least recently used CLOB client for owner {evicted}")
        return client
