# tests/core/test_logging.py
"""Tests for structured logging configuration."""

import json
import logging

from collections.abc import Iterator

import pytest
import structlog

from issuecorpus.core.config import LoggingSettings
from issuecorpus.core.logging import configure_from_settings, configure_logging, get_logger, run_context


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    """Handlers bound to a captured stdout must not outlive the test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestLoggingConfig:
    """Tests for logging configuration."""

    def test_get_logger_returns_bound_logger(self) -> None:
        logger = get_logger("test")

        assert hasattr(logger, "info")
        assert hasattr(logger, "bind")

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True)

        get_logger("test").info("batch processed", batch_id="batch-1", successful=3)

        data = json.loads(capsys.readouterr().out.strip().split("\n")[-1])
        assert data["event"] == "batch processed"
        assert data["batch_id"] == "batch-1"
        assert data["successful"] == 3
        assert data["level"] == "info"
        assert "_record" not in data

    def test_console_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=False)

        get_logger("test").info("grouping complete", components=4)

        out = capsys.readouterr().out
        assert "grouping complete" in out
        assert not out.strip().startswith("{")

    def test_stdlib_records_use_the_same_renderer(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True)

        logging.getLogger("some.library").warning("plain stdlib message")

        data = json.loads(capsys.readouterr().out.strip().split("\n")[-1])
        assert data["event"] == "plain stdlib message"

    def test_noisy_loggers_held_at_warning(self) -> None:
        configure_logging(level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
        assert logging.getLogger("dynaconf").level == logging.WARNING

    def test_noisy_loggers_follow_stricter_root_level(self) -> None:
        configure_logging(level="ERROR")

        assert logging.getLogger("sqlalchemy").level == logging.ERROR

    def test_run_context_binds_fields_for_the_block(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True)
        logger = get_logger("issuecorpus.engine")

        with run_context("nightly-corpus", resume=True):
            logger.info("inside")
            logging.getLogger("sqlalchemy.engine").error("library line")
        logger.info("outside")

        inside, library, outside = (json.loads(line) for line in capsys.readouterr().out.strip().split("\n")[-3:])
        assert inside["process_name"] == "nightly-corpus"
        assert inside["resume"] is True
        assert inside["logger"] == "issuecorpus.engine"
        assert library["process_name"] == "nightly-corpus"
        assert "process_name" not in outside

    def test_configure_from_settings(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_from_settings(LoggingSettings(level="WARNING", json_output=True))

        logger = get_logger("test")
        logger.info("hidden")
        logger.warning("shown")

        lines = [line for line in capsys.readouterr().out.strip().split("\n") if line]
        events = [json.loads(line)["event"] for line in lines]
        assert events == ["shown"]
