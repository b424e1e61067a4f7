"""Logging setup for the Vikunja filter server.

stdout carries the MCP stdio transport, so records go to stderr and,
when LOG_DIR is set, to a dated file. Every handler redacts Vikunja
tokens, and HTTP client loggers are raised to WARNING because they log
each request URL, which includes the filter query.
"""

import logging
import sys
from pathlib import Path

from .security import redact

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
QUIET_LOGGERS = ("httpx", "httpcore")


class RedactingFilter(logging.Filter):
    """Replace token-like text in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def setup_logging(
    name: str = "vikunja_mcp",
    level: str = "INFO",
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure the root logger for a server process.

    Args:
        name: Name of the logger to return
        level: Level name, normally settings.log_level
        log_file: Also write to this file, creating its directory

    Returns:
        The named logger
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.addFilter(RedactingFilter())

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    for quiet in QUIET_LOGGERS:
        logging.getLogger(quiet).setLevel(logging.WARNING)

    return logging.getLogger(name)
