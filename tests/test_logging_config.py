"""Tests for process logging setup."""

import logging
import sys
from pathlib import Path

import pytest

from vikunja_mcp.utils.logging_config import RedactingFilter, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    httpx_level = logging.getLogger("httpx").level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("httpx").setLevel(httpx_level)


class TestSetupLogging:
    def test_logs_to_stderr_only_by_default(self):
        logger = setup_logging(level="debug")

        root = logging.getLogger()
        assert logger.name == "vikunja_mcp"
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert root.handlers[0].stream is sys.stderr

    def test_http_client_loggers_are_quiet(self):
        setup_logging()

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_file_handler_creates_directory(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "vikunja_mcp_2024-01-15.log"

        logger = setup_logging(log_file=log_file)
        logger.info("sweeper started")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert log_file.parent.is_dir()
        assert "sweeper started" in log_file.read_text()

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(level="chatty")

        assert logging.getLogger().level == logging.INFO


class TestRedactingFilter:
    def _record(self, msg: str, *args) -> logging.LogRecord:
        return logging.LogRecord("vikunja_mcp", logging.INFO, __file__, 1, msg, args, None)

    def test_tokens_are_redacted(self):
        record = self._record("Auth header was %s", "Bearer tk_abcdefgh1234")

        assert RedactingFilter().filter(record)
        assert record.getMessage() == "Auth header was Bearer [REDACTED]"

    def test_clean_records_are_untouched(self):
        record = self._record("Filter %s ran server-side", "priority >= 3")

        RedactingFilter().filter(record)

        assert record.args == ("priority >= 3",)
