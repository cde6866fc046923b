"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from burnkeeper.core.json_utils import dumps

load_dotenv()

log = logging.getLogger("burnkeeper")


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    # Token and supply
    asset: str
    initial_supply: float
    initial_reserve_pct: float
    default_decimals: int
    burn_mode: str  # native, incinerator
    incinerator_address: str
    schedule_path: Optional[str]
    # Collaborators ("module:callable")
    gateway_factory: Optional[str]
    venue_factory: Optional[str]
    # Valuation feed
    valuation_url: Optional[str]
    valuation_field: str
    valuation_ttl_sec: float
    valuation_max_stale_sec: float
    # Polling
    milestone_interval_sec: float
    buyback_interval_sec: float
    reconcile_interval_sec: float
    # Buyback
    reward_threshold: float
    buy_input_ratio: float
    slippage_buffer: float
    # Retry / timeouts
    retry_base_delay_sec: float
    retry_max_attempts: int
    max_context_refreshes: int
    rpc_timeout_sec: float
    settlement_timeout_sec: float
    # Reconciliation
    reserve_drift_tolerance: float
    orphan_grace_sec: float
    # Storage
    state_dir: str
    journal_fsync: bool
    # Observability
    metrics_port: int
    alert_webhook_url: Optional[str]
    alert_webhook_type: str  # generic, slack, discord
    alert_enabled: bool

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging."""
        return self.__dict__.copy()

    @classmethod
    def load(cls) -> "Settings":
        cfg = cls(
            asset=os.getenv("BURN_TOKEN_ADDRESS", ""),
            initial_supply=_float_env("BURN_INITIAL_SUPPLY", 1_000_000_000),
            initial_reserve_pct=_float_env("BURN_INITIAL_RESERVE_PCT", 0.30),
            default_decimals=_int_env("BURN_TOKEN_DECIMALS", 6),
            burn_mode=os.getenv("BURN_MODE", "native"),
            incinerator_address=os.getenv(
                "BURN_INCINERATOR_ADDRESS", "1nc1nerator11111111111111111111111111111111"
            ),
            schedule_path=os.getenv("BURN_SCHEDULE_PATH") or None,
            gateway_factory=os.getenv("BURN_GATEWAY_FACTORY") or None,
            venue_factory=os.getenv("BURN_VENUE_FACTORY") or None,
            valuation_url=os.getenv("BURN_VALUATION_URL") or None,
            valuation_field=os.getenv("BURN_VALUATION_FIELD", "pairs.0.marketCap"),
            valuation_ttl_sec=_float_env("BURN_VALUATION_TTL_SEC", 30.0),
            valuation_max_stale_sec=_float_env("BURN_VALUATION_MAX_STALE_SEC", 900.0),
            milestone_interval_sec=_float_env("BURN_MILESTONE_INTERVAL_SEC", 60.0),
            buyback_interval_sec=_float_env("BURN_BUYBACK_INTERVAL_SEC", 900.0),
            reconcile_interval_sec=_float_env("BURN_RECONCILE_INTERVAL_SEC", 14_400.0),
            reward_threshold=_float_env("BURN_REWARD_THRESHOLD", 0.5),
            buy_input_ratio=_float_env("BURN_BUY_INPUT_RATIO", 0.95),
            slippage_buffer=_float_env("BURN_SLIPPAGE_BUFFER", 0.01),
            retry_base_delay_sec=_float_env("BURN_RETRY_BASE_DELAY_SEC", 1.0),
            retry_max_attempts=_int_env("BURN_RETRY_MAX_ATTEMPTS", 3),
            max_context_refreshes=_int_env("BURN_MAX_CONTEXT_REFRESHES", 2),
            rpc_timeout_sec=_float_env("BURN_RPC_TIMEOUT_SEC", 10.0),
            settlement_timeout_sec=_float_env("BURN_SETTLEMENT_TIMEOUT_SEC", 60.0),
            reserve_drift_tolerance=_float_env("BURN_RESERVE_DRIFT_TOLERANCE", 0.0),
            orphan_grace_sec=_float_env("BURN_ORPHAN_GRACE_SEC", 300.0),
            state_dir=os.getenv("BURN_STATE_DIR", "data"),
            journal_fsync=env_bool("BURN_JOURNAL_FSYNC", True),
            metrics_port=_int_env("BURN_METRICS_PORT", 0),
            alert_webhook_url=os.getenv("BURN_ALERT_WEBHOOK_URL") or None,
            alert_webhook_type=os.getenv("BURN_ALERT_WEBHOOK_TYPE", "generic"),
            alert_enabled=env_bool("BURN_ALERT_ENABLED", True),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def _validate(self) -> None:
        if self.initial_supply <= 0:
            raise ValueError("BURN_INITIAL_SUPPLY must be > 0")
        if not 0 <= self.initial_reserve_pct <= 1:
            raise ValueError("BURN_INITIAL_RESERVE_PCT must be within [0, 1]")
        if self.default_decimals < 0:
            raise ValueError("BURN_TOKEN_DECIMALS must be >= 0")
        if self.burn_mode not in {"native", "incinerator"}:
            raise ValueError("BURN_MODE must be 'native' or 'incinerator'")
        if not 0 < self.buy_input_ratio <= 1:
            raise ValueError("BURN_BUY_INPUT_RATIO must be within (0, 1]")
        if not 0 <= self.slippage_buffer < 1:
            raise ValueError("BURN_SLIPPAGE_BUFFER must be within [0, 1)")
        if self.retry_max_attempts < 1:
            raise ValueError("BURN_RETRY_MAX_ATTEMPTS must be >= 1")
        if self.retry_base_delay_sec < 0:
            raise ValueError("BURN_RETRY_BASE_DELAY_SEC must be >= 0")
        if self.max_context_refreshes < 0:
            raise ValueError("BURN_MAX_CONTEXT_REFRESHES must be >= 0")
        if self.rpc_timeout_sec <= 0 or self.settlement_timeout_sec <= 0:
            raise ValueError("Ledger timeouts must be > 0")
        if min(self.milestone_interval_sec, self.buyback_interval_sec, self.reconcile_interval_sec) <= 0:
            raise ValueError("Poll intervals must be > 0")
        if self.valuation_max_stale_sec < self.valuation_ttl_sec:
            raise ValueError("BURN_VALUATION_MAX_STALE_SEC must be >= BURN_VALUATION_TTL_SEC")
        if self.reserve_drift_tolerance < 0:
            raise ValueError("BURN_RESERVE_DRIFT_TOLERANCE must be >= 0")

        if not self.asset:
            log.warning(
                "WARNING: BURN_TOKEN_ADDRESS not set. "
                "Burns cannot be submitted until the token asset is configured."
            )
        if self.slippage_buffer == 0:
            log.warning(
                "WARNING: BURN_SLIPPAGE_BUFFER is 0. "
                "Buyback burns may fail when the settled amount is below the quote."
            )
        if self.settlement_timeout_sec < 30:
            log.warning(
                f"WARNING: BURN_SETTLEMENT_TIMEOUT_SEC={self.settlement_timeout_sec} is short. "
                "Confirmations regularly take longer under load."
            )


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    payload = {
        "event": "config_loaded",
        "asset": cfg.asset,
        "burn_mode": cfg.burn_mode,
        "reward_threshold": cfg.reward_threshold,
        "slippage_buffer": cfg.slippage_buffer,
        "retry_max_attempts": cfg.retry_max_attempts,
        "milestone_interval_sec": cfg.milestone_interval_sec,
        "buyback_interval_sec": cfg.buyback_interval_sec,
        "reconcile_interval_sec": cfg.reconcile_interval_sec,
        "state_dir": cfg.state_dir,
    }
    log.info(dumps(payload))
