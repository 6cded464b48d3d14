"""
Tests for the logging module.

This test module validates:
- JSON-formatted structured logging output
- Logger configuration and setup
- Log level handling
- Extra fields in log entries
"""

from __future__ import annotations

import json
import logging
import sys
from io import StringIO

from daemux_updater.config import LoggingConfig
from daemux_updater.logging import JSONFormatter, get_logger, setup_logging

# =============================================================================
# Tests for JSONFormatter
# =============================================================================


def _record(msg: str = "Test message", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="daemux_updater.test",
        level=logging.INFO,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for JSONFormatter class."""

    def test_format_basic_log_record(self) -> None:
        """Test formatting a basic log record as JSON."""
        output = json.loads(JSONFormatter().format(_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "daemux_updater.test"
        assert output["message"] == "Test message"
        assert "timestamp" in output

    def test_format_includes_extra_fields(self) -> None:
        """Test that extra fields are included in the output."""
        output = json.loads(
            JSONFormatter().format(_record(version="2.3.0", platform="linux-x64"))
        )

        assert output["version"] == "2.3.0"
        assert output["platform"] == "linux-x64"

    def test_format_skips_none_extra(self) -> None:
        """Test that None-valued extra fields are omitted."""
        output = json.loads(JSONFormatter().format(_record(error=None)))

        assert "error" not in output

    def test_format_non_serializable_extra(self) -> None:
        """Test that non-JSON values are stringified."""
        output = json.loads(JSONFormatter().format(_record(path=object())))

        assert isinstance(output["path"], str)

    def test_format_with_exception(self) -> None:
        """Test that exception info is rendered."""
        try:
            raise ValueError("bad value")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        output = json.loads(JSONFormatter().format(record))

        assert "ValueError: bad value" in output["exception"]


# =============================================================================
# Tests for setup_logging / get_logger
# =============================================================================


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_json_output_to_stream(self) -> None:
        """Test that records are written as JSON lines."""
        stream = StringIO()
        setup_logging(level="debug", stream=stream)

        get_logger("installer").info("Version installed", extra={"version": "1.0.0"})

        line = json.loads(stream.getvalue().strip())
        assert line["message"] == "Version installed"
        assert line["logger"] == "daemux_updater.installer"
        assert line["version"] == "1.0.0"

    def test_level_filters_records(self) -> None:
        """Test that records below the level are dropped."""
        stream = StringIO()
        setup_logging(level="warning", stream=stream)

        get_logger("x").info("hidden")
        get_logger("x").warning("shown")

        output = stream.getvalue()
        assert "hidden" not in output
        assert "shown" in output

    def test_config_overrides_keywords(self) -> None:
        """Test that a LoggingConfig takes precedence."""
        stream = StringIO()
        setup_logging(
            LoggingConfig(level="error", json_format=False),
            level="debug",
            stream=stream,
        )

        get_logger("x").warning("dropped")
        get_logger("x").error("plain text")

        output = stream.getvalue()
        assert "dropped" not in output
        assert " - ERROR - plain text" in output

    def test_repeated_setup_does_not_duplicate_handlers(self) -> None:
        """Test that calling setup twice leaves a single stream handler."""
        stream = StringIO()
        setup_logging(stream=stream)
        logger = setup_logging(stream=stream)

        stream_handlers = [
            h for h in logger.handlers if not isinstance(h, logging.NullHandler)
        ]
        assert len(stream_handlers) == 1


class TestGetLogger:
    """Tests for get_logger function."""

    def test_prefixes_package_name(self) -> None:
        """Test that bare names become package children."""
        assert get_logger("locks").name == "daemux_updater.locks"

    def test_keeps_qualified_name(self) -> None:
        """Test that module names are used unchanged."""
        assert get_logger("daemux_updater.state").name == "daemux_updater.state"

    def test_package_logger_has_null_handler(self) -> None:
        """Test that importing the package installs a NullHandler."""
        handlers = logging.getLogger("daemux_updater").handlers

        assert any(isinstance(h, logging.NullHandler) for h in handlers)
