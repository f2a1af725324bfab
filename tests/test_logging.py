from __future__ import annotations

import json

import pytest
import structlog

from erpcore.infra.logging import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()
    configure_logging()


def test_json_logging_renders_event_and_context(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("INFO", json_output=True)

    get_logger("erpcore.tests").info("invoice_created", invoice_id="inv_1", items=2)

    line = capsys.readouterr().out.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["event"] == "invoice_created"
    assert record["invoice_id"] == "inv_1"
    assert record["items"] == 2
    assert record["level"] == "info"
    assert record["logger_name"] == "erpcore.tests"
    assert "timestamp" in record


def test_level_filters_lower_events(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("WARNING", json_output=True)

    logger = get_logger()
    logger.info("hidden")
    logger.warning("invoice_period_conflict", subscription_id="sub_1")

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["event"] == "invoice_period_conflict"


def test_unknown_level_falls_back_to_info(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("verbose", json_output=True)

    get_logger().info("shown")

    assert json.loads(capsys.readouterr().out.strip())["event"] == "shown"
