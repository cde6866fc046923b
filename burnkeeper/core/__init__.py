"""
Core package.

This package contains the record types, the error taxonomy and common
utilities shared by every other layer.
"""

from burnkeeper.core.errors import (
    BurnkeeperError,
    DuplicateBurnError,
    ErrorKind,
    InvalidTransitionError,
    LedgerError,
    RecordNotFoundError,
    ValuationUnavailableError,
    classify_error,
)
from burnkeeper.core.models import (
    Burn,
    BurnType,
    MetricsSnapshot,
    Milestone,
    MilestoneStatus,
    RewardCycle,
    RewardStatus,
    SnapshotReason,
)
from burnkeeper.core.utils import new_record_id, now_ms, to_base_units

__all__ = [
    "BurnkeeperError",
    "DuplicateBurnError",
    "ErrorKind",
    "InvalidTransitionError",
    "LedgerError",
    "RecordNotFoundError",
    "ValuationUnavailableError",
    "classify_error",
    "Burn",
    "BurnType",
    "MetricsSnapshot",
    "Milestone",
    "MilestoneStatus",
    "RewardCycle",
    "RewardStatus",
    "SnapshotReason",
    "new_record_id",
    "now_ms",
    "to_base_units",
]
