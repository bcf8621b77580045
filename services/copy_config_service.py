"""Copy config management."""

import logging
from typing import Any, Dict, List, Optional

from config import settings
from database.models import AmountType, ConfigStatus, CopyConfig, SourceType
from utils.clock import Clock, utc_now
from utils.validators import validate_address, validate_amount, validate_categories, validate_percentage

logger = logging.getLogger(__name__)

BOUND_FIELDS = ("min_buy_amount", "max_buy_amount", "min_sell_amount", "max_sell_amount")

# Fields callers may change through update()
UPDATABLE_FIELDS = (
    "copy_buys",
    "copy_sells",
    "amount_type",
    "buy_amount",
    "sell_amount",
    *BOUND_FIELDS,
    "market_categories",
    "signal_categories",
    "slippage",
    "max_retries",
    "max_buy_trades_per_day",
    "duration_days",
)


class ConfigValidationError(ValueError):
    """Raised when a copy config request is invalid."""


class ConfigNotFoundError(ConfigValidationError):
    """Raised when a config does not exist or belongs to another owner."""

    def __init__(self, config_id: int):
        super().__init__("Copy trading configuration not found")
        self.config_id = config_id


def _validate_policy(amount_type: AmountType, buy_amount: Any, sell_amount: Any) -> Dict[str, float]:
    if amount_type == AmountType.FIXED:
        buy = validate_amount(buy_amount)
        if buy is None:
            raise ConfigValidationError("Buy amount must be a positive number")
        sell = validate_amount(sell_amount)
        if sell is None:
            raise ConfigValidationError("Sell amount must be a positive number")
    else:
        buy = validate_percentage(buy_amount)
        if buy is None:
            raise ConfigValidationError("Buy percentage must be between 0 and 100")
        sell = validate_percentage(sell_amount)
        if sell is None:
            raise ConfigValidationError("Sell percentage must be between 0 and 100")
    return {"buy_amount": buy, "sell_amount": sell}


def _validate_bounds(fields: Dict[str, Any]) -> Dict[str, Optional[float]]:
    labels = {
        "min_buy_amount": "Minimum buy amount",
        "max_buy_amount": "Maximum buy amount",
        "min_sell_amount": "Minimum sell amount",
        "max_sell_amount": "Maximum sell amount",
    }
    result = {}
    for name in BOUND_FIELDS:
        if name not in fields:
            continue
        value = fields[name]
        if value is None or value == "":
            result[name] = None
            continue
        bound = validate_amount(value, min_val=0, allow_min=True)
        if bound is None:
            raise ConfigValidationError(f"{labels[name]} cannot be negative")
        result[name] = bound
    return result


def _to_int(value: Any, label: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"{label} must be a whole number")


def _validate_execution(fields: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    if fields.get("slippage") is not None:
        slippage = validate_amount(fields["slippage"], min_val=0, max_val=1, allow_min=True)
        if slippage is None:
            raise ConfigValidationError("Slippage must be between 0 and 1")
        result["slippage"] = slippage
    if fields.get("max_retries") is not None:
        retries = _to_int(fields["max_retries"], "Max retries")
        if retries < 1:
            raise ConfigValidationError("Max retries must be at least 1")
        result["max_retries"] = retries
    for name, label in (("max_buy_trades_per_day", "Max buy trades per day"), ("duration_days", "Duration")):
        if name not in fields:
            continue
        value = fields[name]
        if value is None:
            result[name] = None
            continue
        value = _to_int(value, label)
        if value < 1:
            raise ConfigValidationError(f"{label} must be at least 1")
        result[name] = value
    return result


class CopyConfigService:
    """
    Create and manage copy configs for owners.

    New configs start disabled and unauthorized; authorization happens
    out of band and enabling requires it.
    """

    def __init__(self, config_repo, record_repo=None, clock: Clock = utc_now):
        self.configs = config_repo
        self.records = record_repo
        self.clock = clock

    async def _get_owned(self, owner_id: int, config_id: int) -> CopyConfig:
        config = await self.configs.get_by_id(config_id)
        if config is None or config.owner_id != owner_id:
            raise ConfigNotFoundError(config_id)
        return config

    async def create(
        self,
        owner_id: int,
        source_type: SourceType = SourceType.TRADE,
        trader_address: Optional[str] = None,
        signal_categories: Optional[List[str]] = None,
        copy_buys: bool = True,
        copy_sells: bool = True,
        amount_type: AmountType = AmountType.FIXED,
        buy_amount: Any = None,
        sell_amount: Any = None,
        market_categories: Optional[List[str]] = None,
        **options,
    ) -> CopyConfig:
        """
        Create a copy config.

        Args:
            owner_id: Owner of the config
            source_type: Trade (follow a trader) or signal (follow categories)
            trader_address: Followed trader, required for trade configs
            signal_categories: Followed signal categories, required for signal configs
            copy_buys: Mirror buy events
            copy_sells: Mirror sell events
            amount_type: Sizing policy
            buy_amount: Policy value for buys
            sell_amount: Policy value for sells
            market_categories: Category allow-list (empty allows all)
            **options: Bounds, slippage, max_retries, max_buy_trades_per_day, duration_days

        Returns:
            The created config

        Raises:
            ConfigValidationError: If the request is invalid
        """
        source_type = SourceType(source_type)
        try:
            amount_type = AmountType(amount_type)
        except ValueError:
            raise ConfigValidationError(f"Unknown amount type: {amount_type}")

        unknown = set(options) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ConfigValidationError(f"Unknown config fields: {sorted(unknown)}")

        fields: Dict[str, Any] = {}
        if source_type == SourceType.TRADE:
            address = validate_address(trader_address or "")
            if address is None:
                raise ConfigValidationError("Invalid trader address format")
            if await self.configs.get_by_owner_and_trader(owner_id, address):
                raise ConfigValidationError("You already have a copy trading configuration for this trader")
            fields["trader_address"] = address
        else:
            categories = validate_categories(signal_categories or [])
            if not categories:
                raise ConfigValidationError("At least one signal category is required")
            fields["signal_categories"] = categories

        fields.update(_validate_policy(amount_type, buy_amount, sell_amount))

        if not copy_buys and not copy_sells:
            raise ConfigValidationError("At least one trade type (buy or sell) must be enabled")

        fields.update(_validate_bounds(options))
        fields.update(_validate_execution(options))
        fields.setdefault("slippage", settings.default_slippage)
        fields.setdefault("max_retries", settings.default_max_retries)

        try:
            config = await self.configs.create(
                owner_id,
                source_type,
                copy_buys=copy_buys,
                copy_sells=copy_sells,
                amount_type=amount_type,
                market_categories=validate_categories(market_categories or []),
                enabled=False,
                authorized=False,
                status=ConfigStatus.ACTIVE,
                **fields,
            )
        except ValueError as e:
            # Unique (owner, trader) race
            raise ConfigValidationError(str(e)) from e

        logger.info(f"Created {source_type.value} config {config.id} for owner {owner_id} ({config.source_label})")
        return config

    async def update(self, owner_id: int, config_id: int, **updates) -> CopyConfig:
        """
        Update policy fields of a config.

        Raises:
            ConfigValidationError: If the config is missing or the update is invalid
        """
        config = await self._get_owned(owner_id, config_id)
        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ConfigValidationError(f"Unknown config fields: {sorted(unknown)}")

        fields: Dict[str, Any] = {}
        for name in ("copy_buys", "copy_sells"):
            if updates.get(name) is not None:
                fields[name] = bool(updates[name])
        if not fields.get("copy_buys", config.copy_buys) and not fields.get("copy_sells", config.copy_sells):
            raise ConfigValidationError("At least one trade type (buy or sell) must be enabled")

        if any(updates.get(name) is not None for name in ("amount_type", "buy_amount", "sell_amount")):
            try:
                amount_type = AmountType(updates.get("amount_type") or config.amount_type)
            except ValueError:
                raise ConfigValidationError(f"Unknown amount type: {updates['amount_type']}")
            fields["amount_type"] = amount_type
            fields.update(_validate_policy(
                amount_type,
                updates["buy_amount"] if updates.get("buy_amount") is not None else config.buy_amount,
                updates["sell_amount"] if updates.get("sell_amount") is not None else config.sell_amount,
            ))

        fields.update(_validate_bounds(updates))
        fields.update(_validate_execution(updates))

        if "market_categories" in updates:
            fields["market_categories"] = validate_categories(updates["market_categories"] or [])
        if "signal_categories" in updates:
            if config.source_type != SourceType.SIGNAL:
                raise ConfigValidationError("Signal categories only apply to signal configs")
            categories = validate_categories(updates["signal_categories"] or [])
            if not categories:
                raise ConfigValidationError("At least one signal category is required")
            fields["signal_categories"] = categories

        if not fields:
            return config
        return await self.configs.update(config_id, **fields)

    async def authorize(self, owner_id: int, config_id: int) -> CopyConfig:
        """Mark a config as authorized to trade for its owner."""
        await self._get_owned(owner_id, config_id)
        return await self.configs.update(config_id, authorized=True)

    async def enable(self, owner_id: int, config_id: int) -> CopyConfig:
        """
        Enable a config.

        Raises:
            ConfigValidationError: If the config is not authorized
        """
        config = await self._get_owned(owner_id, config_id)
        if not config.authorized:
            raise ConfigValidationError("Copy trading must be authorized before it can be enabled")
        return await self.configs.update(config_id, enabled=True, status=ConfigStatus.ACTIVE)

    async def disable(self, owner_id: int, config_id: int) -> CopyConfig:
        await self._get_owned(owner_id, config_id)
        return await self.configs.update(config_id, enabled=False, status=ConfigStatus.DISABLED)

    async def pause(self, owner_id: int, config_id: int) -> CopyConfig:
        await self._get_owned(owner_id, config_id)
        return await self.configs.update(config_id, enabled=False, status=ConfigStatus.PAUSED)

    async def resume(self, owner_id: int, config_id: int) -> CopyConfig:
        """
        Resume a paused config.

        A config paused because its duration ran out starts a fresh
        duration window from now.
        """
        config = await self._get_owned(owner_id, config_id)
        if not config.authorized:
            raise ConfigValidationError("Copy trading must be authorized before it can be enabled")
        fields: Dict[str, Any] = {"enabled": True, "status": ConfigStatus.ACTIVE}
        now = self.clock()
        if config.duration_expired(now):
            fields["start_date"] = now
        return await self.configs.update(config_id, **fields)

    async def delete(self, owner_id: int, config_id: int) -> bool:
        """Delete a config; its copy records are kept with no config."""
        await self._get_owned(owner_id, config_id)
        deleted = await self.configs.delete(config_id)
        if deleted:
            logger.info(f"Deleted config {config_id} for owner {owner_id}")
        return deleted

    async def list_for_owner(self, owner_id: int) -> List[CopyConfig]:
        return await self.configs.get_by_owner(owner_id)

    async def stats(self, owner_id: int, config_id: int) -> Dict[str, int]:
        """Get record counts by status and redemption status for a config."""
        await self._get_owned(owner_id, config_id)
        if self.records is None:
            return {}
        return await self.records.count_by_status(config_id)
