"""Tests for toolwarden structured logging."""

import json
import logging
import sys

import pytest

from toolwarden.logging import WardenFormatter, configure_logging, get_logger


def _record(name="toolwarden.router", level=logging.INFO, msg="Tool routed"):
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


@pytest.fixture
def restore_logger():
    yield
    root = logging.getLogger("toolwarden")
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)


class TestWardenFormatter:
    def test_human_readable_format(self):
        output = WardenFormatter(json_output=False).format(_record())
        assert "toolwarden.router" in output
        assert "Tool routed" in output
        assert "INFO" in output

    def test_json_format(self):
        record = _record(name="toolwarden.security", level=logging.WARNING, msg="Command flagged")
        data = json.loads(WardenFormatter(json_output=True).format(record))
        assert data["logger"] == "toolwarden.security"
        assert data["message"] == "Command flagged"
        assert data["level"] == "WARNING"
        assert "timestamp" in data

    def test_extra_fields_in_human_format(self):
        record = _record()
        record.tool_name = "Bash"  # type: ignore[attr-defined]
        record.confidence = 85  # type: ignore[attr-defined]
        output = WardenFormatter(json_output=False).format(record)
        assert "tool_name=Bash" in output
        assert "confidence=85" in output

    def test_extra_fields_in_json_format(self):
        record = _record()
        record.session_id = "s-1"  # type: ignore[attr-defined]
        record.verdict = "BLOCK"  # type: ignore[attr-defined]
        record.tier = "TIER1_BLOCKED"  # type: ignore[attr-defined]
        data = json.loads(WardenFormatter(json_output=True).format(record))
        assert data["session_id"] == "s-1"
        assert data["verdict"] == "BLOCK"
        assert data["tier"] == "TIER1_BLOCKED"

    def test_unlisted_attributes_ignored(self):
        record = _record()
        record.api_key = "secret"  # type: ignore[attr-defined]
        data = json.loads(WardenFormatter(json_output=True).format(record))
        assert "api_key" not in data

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord(
                "toolwarden", logging.ERROR, "test.py", 1, "failed", (), sys.exc_info()
            )
        data = json.loads(WardenFormatter(json_output=True).format(record))
        assert "RuntimeError: boom" in data["exception"]


class TestGetLogger:
    def test_returns_logger(self):
        logger = get_logger("toolwarden.test")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "toolwarden.test"

    def test_default_name(self):
        assert get_logger().name == "toolwarden"


@pytest.mark.usefixtures("restore_logger")
class TestConfigureLogging:
    def test_default_level_is_warning(self):
        configure_logging()
        assert get_logger("toolwarden").level == logging.WARNING

    def test_configure_debug(self):
        configure_logging(level="debug")
        assert get_logger("toolwarden").level == logging.DEBUG

    def test_configure_json(self):
        configure_logging(json_output=True)
        logger = get_logger("toolwarden")
        assert len(logger.handlers) == 1
        formatter = logger.handlers[0].formatter
        assert isinstance(formatter, WardenFormatter)
        assert formatter._json_output is True

    def test_reconfigure_replaces_handler(self):
        configure_logging()
        configure_logging()
        assert len(get_logger("toolwarden").handlers) == 1

    def test_handler_writes_to_stderr(self, capsys):
        configure_logging(level="INFO")
        get_logger("toolwarden.test").info("hello stderr")
        captured = capsys.readouterr()
        assert "hello stderr" in captured.err
        assert captured.out == ""
