"""Error types for the Vikunja MCP server."""

from typing import Any


class VikunjaMCPError(Exception):
    """Base exception for Vikunja MCP errors."""

    pass


# Filter expression errors
class FilterError(VikunjaMCPError):
    """Base exception for filter expressions that cannot be accepted.

    Every filter error carries the position (0-based offset into the raw
    filter string) and the offending fragment so callers can point at it.
    """

    def __init__(self, message: str, position: int = 0, fragment: str = ""):
        super().__init__(message)
        self.message = message
        self.position = position
        self.fragment = fragment

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "position": self.position,
            "fragment": self.fragment,
        }


class ParseError(FilterError):
    """Raised when a filter string is syntactically malformed."""

    pass


class ValidationError(FilterError):
    """Raised when a field, operator or value is not valid for the schema."""

    pass


class LimitExceededError(FilterError):
    """Raised when a filter is too long, too deep or has too many conditions."""

    def __init__(self, limit: str, actual: int, maximum: int, position: int = 0, fragment: str = ""):
        super().__init__(f"{limit} {actual} exceeds limit {maximum}", position, fragment)
        self.limit = limit
        self.actual = actual
        self.maximum = maximum


# Client-side evaluation errors
class MemoryLimitExceeded(VikunjaMCPError):
    """Raised when client-side filtering is denied by the memory risk gate."""

    suggestion = (
        "Narrow the filter (for example add a project, done or date condition "
        "the server can evaluate) or explicitly allow high memory usage."
    )

    def __init__(self, estimate: Any, reason: str):
        super().__init__(f"{reason}. {self.suggestion}")
        self.estimate = estimate
        self.reason = reason

    @property
    def tier(self) -> str:
        return self.estimate.risk_tier.value


# Remote API errors
class RemoteError(VikunjaMCPError):
    """Raised when the remote task API fails.

    ``kind`` is one of ``timeout``, ``auth``, ``rejected``, ``server``,
    ``transport`` or ``circuit_open``.
    """

    def __init__(self, message: str, kind: str = "transport", status_code: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class CircuitOpenError(RemoteError):
    """Raised when the circuit breaker rejects a call without attempting it."""

    def __init__(self, retry_after: float):
        super().__init__(
            f"Remote API temporarily unavailable (circuit open, retry in {retry_after:.0f}s)",
            kind="circuit_open",
        )
        self.retry_after = retry_after


# Filter store errors
class NotFoundError(VikunjaMCPError):
    """Raised when a session or saved filter does not exist."""

    pass


class ConflictError(VikunjaMCPError):
    """Raised when a saved filter name is already taken within a session."""

    pass


# Configuration errors
class ConfigurationError(VikunjaMCPError):
    """Raised when configuration is missing or invalid."""

    pass


class MissingAPIKeyError(ConfigurationError):
    """Raised when required API key is not found."""

    def __init__(self, key_name: str):
        super().__init__(f"{key_name} not found in environment")
        self.key_name = key_name
