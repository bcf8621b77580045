from .activity_monitor import ActivityMonitor, MonitorResult, SignalMonitor, TradeMonitor
from .copy_config_service import ConfigNotFoundError, ConfigValidationError, CopyConfigService
from .execution_queue import BrokerUnavailableError, ExecutionQueue, RetryPolicy
from .executor import CopyExecutor, ExecutionOutcome
from .position_sizer import SizingResult, size_position
from .recovery import RecoveryService
from .redemption_scanner import RedemptionResult, RedemptionScanner
from .settlement_monitor import SettlementMonitor

__all__ = [
    "ActivityMonitor",
    "MonitorResult",
    "SignalMonitor",
    "TradeMonitor",
    "ConfigNotFoundError",
    "ConfigValidationError",
    "CopyConfigService",
    "BrokerUnavailableError",
    "ExecutionQueue",
    "RetryPolicy",
    "CopyExecutor",
    "ExecutionOutcome",
    "SizingResult",
    "size_position",
    "RecoveryService",
    "RedemptionResult",
    "RedemptionScanner",
    "SettlementMonitor",
]
