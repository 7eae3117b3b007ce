"""
test_logging_config.py — Tests for the engine's log formatters and setup.

Covers:
    • JSON lines with alert fields grouped and request context attached
    • Pretty lines tagged with request id and alert id / state
    • setup_logging replacing only its own handler

Run with:
    pytest tests/test_logging_config.py -v
"""

from __future__ import annotations

import io
import json
import logging
import sys

import pytest

from backend.app.core.logging_config import (
    HANDLER_NAME,
    JSONFormatter,
    PrettyFormatter,
    set_request_context,
    setup_logging,
)


def _record(msg: str = "Plan attached", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "backend.app.alerts.pipeline", logging.INFO, __file__, 1, msg, (), None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def clear_context():
    set_request_context()
    yield
    set_request_context()


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Formatters
# ═══════════════════════════════════════════════════════════════════════════

class TestJSONFormatter:

    def test_alert_fields_grouped(self):
        line = JSONFormatter().format(
            _record(alert_id="ALR-1A2B3C4D5E6F", state="planned", attempt=1, duration_ms=12.5)
        )
        entry = json.loads(line)
        assert entry["message"] == "Plan attached"
        assert entry["alert"] == {"alert_id": "ALR-1A2B3C4D5E6F", "state": "planned", "attempt": 1}
        assert entry["duration_ms"] == 12.5
        assert "request" not in entry

    def test_request_context_attached(self):
        set_request_context(request_id="3f2a9c1e77aa", endpoint="/api/v1/alerts")
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["request"]["endpoint"] == "/api/v1/alerts"
        assert "alert" not in entry

    def test_exception_included(self):
        try:
            raise RuntimeError("planner exploded")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: planner exploded" in entry["exception"]


class TestPrettyFormatter:

    def test_tags(self):
        set_request_context(request_id="3f2a9c1e77aa")
        line = PrettyFormatter(color=False).format(
            _record(alert_id="ALR-1A2B3C4D5E6F", state="planned")
        )
        assert "INFO     [3f2a9c1e] <ALR-1A2B3C4D5E6F planned> backend.app.alerts.pipeline" in line
        assert line.endswith("Plan attached")

    def test_no_colour_codes_when_disabled(self):
        assert "\033[" not in PrettyFormatter(color=False).format(_record())
        assert "\033[32m" in PrettyFormatter(color=True).format(_record())


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Setup
# ═══════════════════════════════════════════════════════════════════════════

class TestSetupLogging:

    def test_replaces_only_its_own_handler(self):
        root = logging.getLogger()
        saved_level, saved_handlers = root.level, list(root.handlers)
        foreign = logging.NullHandler()
        root.addHandler(foreign)
        try:
            stream = io.StringIO()
            setup_logging(level="debug", stream=stream)
            handler = setup_logging(level="debug", stream=stream)
            ours = [h for h in root.handlers if h.get_name() == HANDLER_NAME]
            assert ours == [handler]
            assert foreign in root.handlers
            assert root.level == logging.DEBUG
            assert logging.getLogger("httpx").level == logging.WARNING

            logging.getLogger("backend.app.alerts.store").debug(
                "AlertPlanned", extra={"alert_id": "ALR-1A2B3C4D5E6F"},
            )
            assert "<ALR-1A2B3C4D5E6F>" in stream.getvalue()
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
