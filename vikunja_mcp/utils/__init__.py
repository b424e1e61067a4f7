"""Utility functions and classes."""

from .errors import (
    CircuitOpenError,
    ConflictError,
    FilterError,
    LimitExceededError,
    MemoryLimitExceeded,
    NotFoundError,
    ParseError,
    RemoteError,
    ValidationError,
    VikunjaMCPError,
)
from .tool_decorators import handle_tool_errors

__all__ = [
    "VikunjaMCPError",
    "FilterError",
    "ParseError",
    "ValidationError",
    "LimitExceededError",
    "MemoryLimitExceeded",
    "RemoteError",
    "CircuitOpenError",
    "NotFoundError",
    "ConflictError",
    "handle_tool_errors",
]
