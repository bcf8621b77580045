from .owner import Owner
from .copy_config import AmountType, ConfigStatus, ConfigWithOwner, CopyConfig, SourceType
from .copy_record import (
    CopyRecord,
    CopyRecordAggregate,
    FailureCategory,
    NewCopyRecord,
    RecordStatus,
    RedemptionStatus,
    TradeType,
)
from .fetched_event import FetchedEvent
from .execution_job import ExecutionJob, JobStatus, make_job_id

__all__ = [
    "Owner",
    "AmountType",
    "ConfigStatus",
    "ConfigWithOwner",
    "CopyConfig",
    "SourceType",
    "CopyRecord",
    "CopyRecordAggregate",
    "FailureCategory",
    "NewCopyRecord",
    "RecordStatus",
    "RedemptionStatus",
    "TradeType",
    "FetchedEvent",
    "ExecutionJob",
    "JobStatus",
    "make_job_id",
]
