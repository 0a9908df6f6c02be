"""Tests for structlog setup."""

import json

import pytest
import structlog

from pixload.shared.logging import bind_run_context, setup_logging


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


class TestSetupLogging:
    def test_json_lines_carry_run_context(self, capsys) -> None:
        setup_logging("INFO", "json")
        bind_run_context("run-abc", "stress")

        structlog.get_logger().info("load_started", mode="fixed_pool")

        line = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert line["event"] == "load_started"
        assert line["run_id"] == "run-abc"
        assert line["scenario"] == "stress"
        assert line["level"] == "info"
        assert "timestamp" in line

    def test_level_filters(self, capsys) -> None:
        setup_logging("WARNING", "json")
        log = structlog.get_logger()
        log.info("quiet")
        log.warning("loud")
        err = capsys.readouterr().err
        assert "quiet" not in err
        assert "loud" in err

    def test_unknown_level_falls_back_to_info(self, capsys) -> None:
        setup_logging("chatty", "console")
        structlog.get_logger().info("still_logged")
        assert "still_logged" in capsys.readouterr().err
