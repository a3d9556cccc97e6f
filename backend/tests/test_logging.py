"""
Tests for structured logging setup.

Requires Python 3.11+.
"""

import json
import logging
from pathlib import Path

import pytest
import structlog

from utils import logger as logger_module
from utils.config import LoggingSettings
from utils.logger import LoggerMixin, configure_logging, get_logger, watch_context


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    configure_logging(LoggingSettings())
    structlog.reset_defaults()


class Component(LoggerMixin):
    pass


class TestConfigureLogging:
    """Test cases for configure_logging."""

    def test_json_lines_to_file(self, tmp_path: Path):
        log_file = tmp_path / "watch.log"
        configure_logging(LoggingSettings(level="DEBUG", format="json", file_path=log_file))

        get_logger("test").info("path_changed", path="/w/a", etag='"1-2"')

        record = json.loads(log_file.read_text().splitlines()[-1])
        assert record["event"] == "path_changed"
        assert record["path"] == "/w/a"
        assert record["level"] == "info"
        assert record["app"] == "EtagWatch"

    def test_level_filters(self, tmp_path: Path):
        log_file = tmp_path / "watch.log"
        configure_logging(LoggingSettings(level="WARNING", format="json", file_path=log_file))

        get_logger("test").debug("too_chatty")
        get_logger("test").warning("unschedule_failed")

        lines = log_file.read_text().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["event"] == "unschedule_failed"

    def test_reconfigure_closes_previous_file(self, tmp_path: Path):
        configure_logging(LoggingSettings(format="json", file_path=tmp_path / "first.log"))
        first = logger_module._log_file

        configure_logging(LoggingSettings(format="json", file_path=tmp_path / "second.log"))
        get_logger("test").info("watcher_initialized")

        assert first.closed
        assert not logger_module._log_file.closed
        assert (tmp_path / "first.log").read_text() == ""
        assert "watcher_initialized" in (tmp_path / "second.log").read_text()

    def test_stdout_after_file_closes_file(self, tmp_path: Path):
        configure_logging(LoggingSettings(file_path=tmp_path / "watch.log"))
        opened = logger_module._log_file

        configure_logging(LoggingSettings())

        assert opened.closed
        assert logger_module._log_file is None

    def test_quiets_watchdog(self, tmp_path: Path):
        configure_logging(LoggingSettings(level="DEBUG", file_path=tmp_path / "watch.log"))
        assert logging.getLogger("watchdog").level == logging.WARNING

    def test_console_format(self, capsys: pytest.CaptureFixture[str]):
        configure_logging(LoggingSettings(level="INFO", format="console"))

        get_logger("test").info("watcher_stopped", path="/w")

        assert "watcher_stopped" in capsys.readouterr().out


class TestLoggerMixin:
    """Test cases for LoggerMixin and context binding."""

    def test_logger_is_cached(self):
        component = Component()
        assert component.log is component.log

    def test_watch_context_binds_root(self, tmp_path: Path):
        log_file = tmp_path / "watch.log"
        configure_logging(LoggingSettings(level="INFO", format="json", file_path=log_file))

        with watch_context("/w"):
            Component().log.info("watcher_initialized")
        Component().log.info("outside")

        first, second = (json.loads(line) for line in log_file.read_text().splitlines())
        assert first["watch_root"] == "/w"
        assert "watch_root" not in second
