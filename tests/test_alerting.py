"""
Tests for webhook payload formatting, rate limiting and delivery.
"""
import httpx
import pytest

from burnkeeper.monitoring.alerting import (
    Alert,
    AlertConfig,
    AlertManager,
    AlertSeverity,
    AlertType,
    format_payload,
)

URL = "https://hooks.example.com/burn"


def _alert(**kwargs):
    defaults = dict(
        alert_type=AlertType.BURN_FAILED,
        severity=AlertSeverity.CRITICAL,
        title="Milestone burn failed",
        message="TIMEOUT: submit timed out",
        subject="m-1",
        timestamp_ms=1_700_000_000_000,
        details={"attempts": 3},
    )
    defaults.update(kwargs)
    return Alert(**defaults)


class TestFormatting:

    def test_generic(self):
        body = format_payload(_alert(), AlertConfig(webhook_type="generic"))
        assert body["type"] == "BURN_FAILED"
        assert body["severity"] == "CRITICAL"
        assert body["subject"] == "m-1"
        assert body["timestamp_iso"] == "2023-11-14T22:13:20Z"
        assert body["details"] == {"attempts": 3}

    def test_slack(self):
        body = format_payload(_alert(), AlertConfig(webhook_type="slack"))
        attachment = body["attachments"][0]
        assert attachment["color"] == "#FF0000"
        assert attachment["ts"] == 1_700_000_000
        assert {"title": "attempts", "value": "3", "short": True} in attachment["fields"]

    def test_discord_without_details(self):
        body = format_payload(_alert(), AlertConfig(webhook_type="discord", include_details=False))
        embed = body["embeds"][0]
        assert embed["color"] == 0xFF0000
        assert embed["fields"] == [{"name": "Type", "value": "BURN_FAILED", "inline": True}]


def _manager(handler, **config):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AlertManager(AlertConfig(webhook_url=URL, **config), client=client), client


class TestAlertManager:

    @pytest.mark.asyncio
    async def test_disabled_or_unconfigured(self):
        assert await AlertManager(AlertConfig()).send_alert(_alert()) is False
        off = AlertManager(AlertConfig(webhook_url=URL, enabled=False))
        assert await off.send_alert(_alert()) is False

    @pytest.mark.asyncio
    async def test_delivers_and_rate_limits_per_subject(self):
        posted = []

        def handler(request):
            posted.append(request)
            return httpx.Response(200)

        alerts, client = _manager(handler)
        assert await alerts.alert_burn_failed("milestone", "m-1", "TIMEOUT") is True
        assert await alerts.alert_burn_failed("milestone", "m-1", "TIMEOUT") is False
        assert await alerts.alert_burn_failed("milestone", "m-2", "TIMEOUT") is True
        await alerts.drain()
        await client.aclose()

        assert len(posted) == 2
        assert all(str(r.url) == URL for r in posted)

    @pytest.mark.asyncio
    async def test_below_min_severity_dropped(self):
        alerts, client = _manager(lambda request: httpx.Response(200))
        assert await alerts.alert_startup(version="0.1.0") is False
        assert await alerts.alert_shutdown("signal_received") is True
        await alerts.close()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_failed_delivery_is_reported_not_raised(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        alerts, client = _manager(handler)
        assert await alerts._deliver(_alert(), retries=0) is False
        await client.aclose()

    @pytest.mark.asyncio
    async def test_close_keeps_injected_client_open(self):
        alerts, client = _manager(lambda request: httpx.Response(204))
        await alerts.alert_reserve_drift(300_000_000, 299_000_000)
        await alerts.close()
        assert not client.is_closed
        await client.aclose()
