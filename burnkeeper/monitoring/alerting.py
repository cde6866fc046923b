"""
Webhook alerting for events an operator must see.

- Generic JSON, Slack and Discord payloads
- Rate limiting per alert type and subject, so a milestone failing every
  poll produces one alert per window
- Delivery runs in background tasks; a failed delivery is logged, never
  raised into the burn path
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Optional, Set, Tuple

import httpx

from burnkeeper.core.json_utils import dumps

log = logging.getLogger("burnkeeper")


class AlertSeverity(Enum):
    CRITICAL = auto()
    WARNING = auto()
    INFO = auto()


class AlertType(Enum):
    BURN_FAILED = auto()
    RECOVERY_FAILED = auto()
    RESERVE_DRIFT = auto()
    ORPHANED_SUBMISSION = auto()
    VALUATION_UNAVAILABLE = auto()
    STARTUP = auto()
    SHUTDOWN = auto()


@dataclass
class Alert:
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    subject: Optional[str] = None  # milestone / cycle id the alert is about
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.alert_type.name,
            "severity": self.severity.name,
            "title": self.title,
            "message": self.message,
            "subject": self.subject,
            "timestamp_ms": self.timestamp_ms,
            "timestamp_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp_ms / 1000)),
            "details": self.details,
        }


@dataclass
class AlertConfig:
    webhook_url: Optional[str] = None
    webhook_type: str = "generic"  # generic, slack, discord
    min_severity: AlertSeverity = AlertSeverity.WARNING
    rate_limit_seconds: int = 300
    enabled: bool = True
    include_details: bool = True
    source_name: str = "burnkeeper"
    timeout_sec: float = 10.0


_COLORS = {
    AlertSeverity.CRITICAL: 0xFF0000,
    AlertSeverity.WARNING: 0xFFA500,
    AlertSeverity.INFO: 0x0000FF,
}


def format_payload(alert: Alert, config: AlertConfig) -> Dict[str, Any]:
    """Webhook body for the configured webhook type."""
    details = list(alert.details.items())[:5] if config.include_details else []
    if config.webhook_type == "slack":
        fields = [{"title": "Type", "value": alert.alert_type.name, "short": True}]
        fields += [{"title": k, "value": str(v), "short": True} for k, v in details]
        return {
            "username": config.source_name,
            "attachments": [{
                "color": f"#{_COLORS[alert.severity]:06X}",
                "title": alert.title,
                "text": alert.message,
                "fields": fields,
                "footer": f"{config.source_name} | {alert.severity.name}",
                "ts": alert.timestamp_ms // 1000,
            }],
        }
    if config.webhook_type == "discord":
        fields = [{"name": "Type", "value": alert.alert_type.name, "inline": True}]
        fields += [{"name": k, "value": str(v), "inline": True} for k, v in details]
        return {
            "username": config.source_name,
            "embeds": [{
                "title": alert.title,
                "description": alert.message,
                "color": _COLORS[alert.severity],
                "fields": fields,
                "footer": {"text": f"{config.source_name} | {alert.severity.name}"},
            }],
        }
    return alert.to_dict()


class AlertManager:
    """
    Usage:
        alerts = AlertManager(AlertConfig(webhook_url=url, webhook_type="slack"))
        await alerts.alert_burn_failed("milestone", m.id, "TIMEOUT: ...")
        ...
        await alerts.close()
    """

    def __init__(self, config: Optional[AlertConfig] = None, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config or AlertConfig()
        self._last_sent: Dict[Tuple[AlertType, Optional[str]], float] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._client = client
        self._owns_client = client is None

    async def send_alert(self, alert: Alert) -> bool:
        """
        Schedule delivery of an alert.

        Returns:
            True if queued, False if disabled, below severity or rate limited
        """
        if not self.config.enabled or not self.config.webhook_url:
            return False
        if alert.severity.value > self.config.min_severity.value:
            return False

        key = (alert.alert_type, alert.subject)
        now = time.monotonic()
        last = self._last_sent.get(key)
        if last is not None and now - last < self.config.rate_limit_seconds:
            log.debug(dumps({"event": "alert_rate_limited", "type": alert.alert_type.name, "subject": alert.subject}))
            return False
        self._last_sent[key] = now

        task = asyncio.create_task(self._deliver(alert))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _deliver(self, alert: Alert, retries: int = 2) -> bool:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_sec)
        payload = format_payload(alert, self.config)
        for attempt in range(retries + 1):
            try:
                resp = await self._client.post(self.config.webhook_url, json=payload)
                if resp.status_code < 300:
                    return True
                log.warning(dumps({"event": "alert_delivery_failed", "status": resp.status_code}))
            except httpx.HTTPError as exc:
                log.warning(dumps({"event": "alert_delivery_error", "attempt": attempt + 1, "error": str(exc)}))
            if attempt < retries:
                await asyncio.sleep(1 * (attempt + 1))
        return False

    async def drain(self) -> None:
        """Wait for in-flight deliveries."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------

    async def alert_burn_failed(self, path: str, subject: str, reason: str, **details: Any) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.BURN_FAILED,
            severity=AlertSeverity.CRITICAL,
            title=f"{path.capitalize()} burn failed",
            message=reason,
            subject=subject,
            details=details,
        ))

    async def alert_recovery_failed(self, path: str, subject: str, reason: str, **details: Any) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.RECOVERY_FAILED,
            severity=AlertSeverity.CRITICAL,
            title=f"{path.capitalize()} recovery failed",
            message=reason,
            subject=subject,
            details=details,
        ))

    async def alert_reserve_drift(self, recorded: float, actual: float) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.RESERVE_DRIFT,
            severity=AlertSeverity.WARNING,
            title="Reserve balance corrected",
            message=f"recorded {recorded} vs on-ledger {actual}",
            details={"recorded": recorded, "actual": actual, "discrepancy": actual - recorded},
        ))

    async def alert_orphaned_submission(self, tx_ref: str, reference_id: str, burn_type: str) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.ORPHANED_SUBMISSION,
            severity=AlertSeverity.WARNING,
            title="Unrecorded burn settled",
            message=f"{burn_type} burn {tx_ref} landed without a local record and was recorded by reconciliation",
            subject=reference_id,
            details={"tx_ref": tx_ref},
        ))

    async def alert_valuation_unavailable(self, error: str) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.VALUATION_UNAVAILABLE,
            severity=AlertSeverity.WARNING,
            title="Valuation unavailable",
            message=error,
        ))

    async def alert_startup(self, **details: Any) -> bool:
        return await self.send_alert(Alert(
            alert_type=AlertType.STARTUP,
            severity=AlertSeverity.INFO,
            title="burnkeeper started",
            message="schedulers running",
            details=details,
        ))

    async def alert_shutdown(self, reason: str = "normal", **details: Any) -> bool:
        severity = AlertSeverity.INFO if reason == "normal" else AlertSeverity.WARNING
        return await self.send_alert(Alert(
            alert_type=AlertType.SHUTDOWN,
            severity=severity,
            title="burnkeeper shutting down",
            message=reason,
            details=details,
        ))
