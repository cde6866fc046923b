"""
Tests for BurnMetrics wiring through the lifecycle orchestrator.
"""
import pytest

from burnkeeper.monitoring.metrics_rich import BurnMetrics


def test_registries_are_isolated():
    a = BurnMetrics()
    b = BurnMetrics()
    a.burns_total.labels(burn_type="milestone").inc()
    assert a.get_registry().get_sample_value("burns_total", {"burn_type": "milestone"}) == 1.0
    assert b.get_registry().get_sample_value("burns_total", {"burn_type": "milestone"}) is None


@pytest.mark.asyncio
async def test_milestone_burn_updates_metrics(harness_factory):
    h = await harness_factory()
    metrics = BurnMetrics()
    h.orchestrator.metrics = metrics
    await h.orchestrator.run_milestone_tick(valuation=120_000)

    reg = metrics.get_registry()
    assert reg.get_sample_value("burns_total", {"burn_type": "milestone"}) == 1.0
    assert reg.get_sample_value("burned_tokens_total", {"burn_type": "milestone"}) == 50_000_000
    assert reg.get_sample_value("milestones_completed") == 1
    assert reg.get_sample_value("total_burned") == 50_000_000
    assert reg.get_sample_value("valuation_usd") == 120_000
    await h.close()
