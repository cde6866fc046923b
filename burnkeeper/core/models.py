"""
Record types for the four persisted families: Milestone, RewardCycle, Burn,
MetricsSnapshot.

Milestone and RewardCycle carry an explicit status with a table of legal
transitions, in the same style as an order lifecycle:

    Milestone:
        PENDING ──> EXECUTING ──┬──> COMPLETED
                        ^       │
                        │       v
                        └───  FAILED

    RewardCycle:
        claimed ──> bought ──> burned
           │          │
           v          v
         failed <─────┘
           │
           └──> recovered

Burn and MetricsSnapshot are append-only.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from burnkeeper.core.errors import InvalidTransitionError


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class MilestoneStatus(Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"  # terminal
    FAILED = "failed"


class RewardStatus(Enum):
    CLAIMED = "claimed"
    BOUGHT = "bought"
    BURNED = "burned"  # terminal
    FAILED = "failed"
    RECOVERED = "recovered"  # terminal


class BurnType(Enum):
    MILESTONE = "milestone"
    BUYBACK = "buyback"
    MILESTONE_RECOVERY = "milestone-recovery"
    BUYBACK_RECOVERY = "buyback-recovery"

    @property
    def is_milestone(self) -> bool:
        """Milestone burns draw from the reserve pool."""
        return self in (BurnType.MILESTONE, BurnType.MILESTONE_RECOVERY)

    @property
    def is_buyback(self) -> bool:
        """Buyback burns draw from circulating supply."""
        return self in (BurnType.BUYBACK, BurnType.BUYBACK_RECOVERY)

    @property
    def is_recovery(self) -> bool:
        return self in (BurnType.MILESTONE_RECOVERY, BurnType.BUYBACK_RECOVERY)


class SnapshotReason(Enum):
    INITIAL = "initial"
    BURN = "burn"
    CORRECTION = "correction"
    REFRESH = "refresh"


VALID_MILESTONE_TRANSITIONS: Dict[MilestoneStatus, List[MilestoneStatus]] = {
    MilestoneStatus.PENDING: [MilestoneStatus.EXECUTING],
    MilestoneStatus.EXECUTING: [
        MilestoneStatus.COMPLETED,
        MilestoneStatus.FAILED,
    ],
    MilestoneStatus.FAILED: [
        MilestoneStatus.EXECUTING,  # retry or recovery
        MilestoneStatus.COMPLETED,  # orphaned submission settled by reconciliation
    ],
    MilestoneStatus.COMPLETED: [],
}

VALID_REWARD_TRANSITIONS: Dict[RewardStatus, List[RewardStatus]] = {
    RewardStatus.CLAIMED: [RewardStatus.BOUGHT, RewardStatus.FAILED],
    RewardStatus.BOUGHT: [RewardStatus.BURNED, RewardStatus.FAILED],
    RewardStatus.FAILED: [RewardStatus.FAILED, RewardStatus.RECOVERED],
    RewardStatus.BURNED: [],
    RewardStatus.RECOVERED: [],
}


def _check_transition(table: Dict[Any, List[Any]], current: Any, target: Any, what: str) -> None:
    if target not in table.get(current, []):
        raise InvalidTransitionError(f"{what}: {current.value} -> {target.value} not allowed")


@dataclass
class Milestone:
    """A valuation threshold that authorizes a fixed-size reserve burn."""
    id: str
    valuation_threshold: float
    burn_amount: float
    percent_of_supply: float
    status: MilestoneStatus = MilestoneStatus.PENDING
    tx_ref: Optional[str] = None
    completed_at: Optional[str] = None
    attempt_count: int = 0
    last_failure_reason: Optional[str] = None
    burn_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status is MilestoneStatus.COMPLETED

    def transition(self, target: MilestoneStatus) -> None:
        _check_transition(VALID_MILESTONE_TRANSITIONS, self.status, target, f"milestone {self.id}")
        self.status = target
        self.updated_at = utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["completed"] = self.completed
        return data

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Milestone":
        return cls(
            id=d["id"],
            valuation_threshold=float(d["valuation_threshold"]),
            burn_amount=float(d["burn_amount"]),
            percent_of_supply=float(d.get("percent_of_supply", 0.0)),
            status=MilestoneStatus(d.get("status", MilestoneStatus.PENDING.value)),
            tx_ref=d.get("tx_ref"),
            completed_at=d.get("completed_at"),
            attempt_count=int(d.get("attempt_count", 0)),
            last_failure_reason=d.get("last_failure_reason"),
            burn_id=d.get("burn_id"),
            created_at=d.get("created_at") or utc_now_iso(),
            updated_at=d.get("updated_at"),
        )


@dataclass
class RewardCycle:
    """One claim -> buy -> burn pass funded by protocol rewards."""
    id: str
    claimed_amount: float
    claim_tx_ref: str
    status: RewardStatus = RewardStatus.CLAIMED
    claimed_amount_usd: Optional[float] = None
    buy_tx_ref: Optional[str] = None
    burn_tx_ref: Optional[str] = None
    tokens_bought: Optional[float] = None
    tokens_burned: Optional[float] = None
    error_message: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: Optional[str] = None
    recovered_at: Optional[str] = None

    @property
    def buy_completed(self) -> bool:
        return self.tokens_bought is not None

    @property
    def awaiting_recovery(self) -> bool:
        return (
            self.status is RewardStatus.FAILED
            and self.buy_completed
            and self.tokens_burned is None
        )

    def transition(self, target: RewardStatus) -> None:
        _check_transition(VALID_REWARD_TRANSITIONS, self.status, target, f"reward cycle {self.id}")
        self.status = target
        self.updated_at = utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RewardCycle":
        return cls(
            id=d["id"],
            claimed_amount=float(d["claimed_amount"]),
            claim_tx_ref=d["claim_tx_ref"],
            status=RewardStatus(d.get("status", RewardStatus.CLAIMED.value)),
            claimed_amount_usd=d.get("claimed_amount_usd"),
            buy_tx_ref=d.get("buy_tx_ref"),
            burn_tx_ref=d.get("burn_tx_ref"),
            tokens_bought=d.get("tokens_bought"),
            tokens_burned=d.get("tokens_burned"),
            error_message=d.get("error_message"),
            created_at=d.get("created_at") or utc_now_iso(),
            updated_at=d.get("updated_at"),
            recovered_at=d.get("recovered_at"),
        )


@dataclass(frozen=True)
class Burn:
    """Durable proof that a destruction transaction landed."""
    id: str
    burn_type: BurnType
    amount: float
    tx_ref: str
    initiator: str
    reference_id: str
    timestamp: str = field(default_factory=utc_now_iso)
    details: Dict[str, Any] = field(default_factory=dict)
    announced: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "burn_type": self.burn_type.value,
            "amount": self.amount,
            "tx_ref": self.tx_ref,
            "initiator": self.initiator,
            "reference_id": self.reference_id,
            "timestamp": self.timestamp,
            "details": dict(self.details),
            "announced": self.announced,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Burn":
        return cls(
            id=d["id"],
            burn_type=BurnType(d["burn_type"]),
            amount=float(d["amount"]),
            tx_ref=d["tx_ref"],
            initiator=d.get("initiator", "unknown"),
            reference_id=d["reference_id"],
            timestamp=d.get("timestamp") or utc_now_iso(),
            details=d.get("details") or {},
            announced=bool(d.get("announced", False)),
        )


@dataclass(frozen=True)
class MetricsSnapshot:
    """Point-in-time supply and burn totals. Latest timestamp is current state."""
    id: str
    total_supply: float
    circulating_supply: float
    reserve_balance: float
    total_burned: float
    buyback_burned: float
    milestone_burned: float
    reason: SnapshotReason = SnapshotReason.BURN
    timestamp: str = field(default_factory=utc_now_iso)
    burn_id: Optional[str] = None
    correction: bool = False
    discrepancy: Optional[float] = None
    previous_reserve_balance: Optional[float] = None

    @property
    def totals_consistent(self) -> bool:
        return abs(self.total_burned - (self.buyback_burned + self.milestone_burned)) < 1e-6

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["reason"] = self.reason.value
        return data

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MetricsSnapshot":
        return cls(
            id=d["id"],
            total_supply=float(d["total_supply"]),
            circulating_supply=float(d["circulating_supply"]),
            reserve_balance=float(d["reserve_balance"]),
            total_burned=float(d.get("total_burned", 0.0)),
            buyback_burned=float(d.get("buyback_burned", 0.0)),
            milestone_burned=float(d.get("milestone_burned", 0.0)),
            reason=SnapshotReason(d.get("reason", SnapshotReason.BURN.value)),
            timestamp=d.get("timestamp") or utc_now_iso(),
            burn_id=d.get("burn_id"),
            correction=bool(d.get("correction", False)),
            discrepancy=d.get("discrepancy"),
            previous_reserve_balance=d.get("previous_reserve_balance"),
        )
