"""Per-owner logging."""

import logging
from typing import Optional

from database.models import Owner


class OwnerLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with the owner's short address."""

    def process(self, msg, kwargs):
        address = self.extra.get("owner_address") or ""
        if address:
            msg = f"[{address[:6]}...{address[-4:]}] {msg}"
        return msg, kwargs


def owner_logger(logger: logging.Logger, owner: Optional[Owner]) -> OwnerLoggerAdapter:
    """Get a logger adapter scoped to an owner."""
    return OwnerLoggerAdapter(
        logger,
        {
            "owner_id": owner.id if owner else None,
            "owner_address": owner.address if owner else None,
        },
    )
