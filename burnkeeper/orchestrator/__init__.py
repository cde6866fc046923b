"""
Orchestrator package.

This package contains the burn lifecycle orchestrator, the reconciliation
engine and the job scheduler that drives both.
"""

from burnkeeper.orchestrator.lifecycle import (
    BurnOutcome,
    BuyReceipt,
    ClaimReceipt,
    LifecycleConfig,
    LifecycleOrchestrator,
    RewardVenue,
)
from burnkeeper.orchestrator.reconciliation import ReconciliationConfig, ReconciliationEngine, SweepResult
from burnkeeper.orchestrator.scheduler import JobScheduler

__all__ = [
    "BurnOutcome",
    "BuyReceipt",
    "ClaimReceipt",
    "LifecycleConfig",
    "LifecycleOrchestrator",
    "RewardVenue",
    "ReconciliationConfig",
    "ReconciliationEngine",
    "SweepResult",
    "JobScheduler",
]
