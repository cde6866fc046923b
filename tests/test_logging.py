import logging

from burnkeeper.core.json_utils import dumps, loads
from burnkeeper.infra.logging_cfg import JsonFormatter, ThrottledFilter, log_event


def _record(msg, level=logging.INFO):
    return logging.LogRecord("burnkeeper", level, __file__, 1, msg, None, None)


def test_throttled_filter_suppresses_repeats_per_reference():
    f = ThrottledFilter(cooldown_sec=60.0)
    stale = dumps({"event": "valuation_stale_served", "reference_id": "feed"})
    assert f.filter(_record(stale)) is True
    assert f.filter(_record(stale)) is False
    other = dumps({"event": "valuation_stale_served", "reference_id": "other"})
    assert f.filter(_record(other)) is True


def test_throttled_filter_passes_everything_else():
    f = ThrottledFilter(cooldown_sec=60.0)
    burn = dumps({"event": "burn_recorded"})
    assert f.filter(_record(burn)) is True
    assert f.filter(_record(burn)) is True
    assert f.filter(_record("plain text")) is True


def test_json_formatter():
    out = loads(JsonFormatter().format(_record("hello", logging.WARNING)))
    assert out["level"] == "WARNING"
    assert out["name"] == "burnkeeper"
    assert out["msg"] == "hello"


def test_log_event_level(caplog):
    logger = logging.getLogger("burnkeeper.test")
    with caplog.at_level(logging.WARNING, logger="burnkeeper.test"):
        log_event(logger, "reserve_drift", level=logging.WARNING, drift=5.0)
    assert loads(caplog.records[0].getMessage()) == {"event": "reserve_drift", "drift": 5.0}
