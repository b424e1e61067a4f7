"""Decorators for standardizing tool error handling."""

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from .errors import (
    ConflictError,
    FilterError,
    LimitExceededError,
    MemoryLimitExceeded,
    NotFoundError,
    RemoteError,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def handle_tool_errors(func: F) -> F:
    """Standardize error handling for async tool functions.

    Catches the filtering error taxonomy and returns a consistent format:
    {"status": "error", "message": "...", "error_type": "..."}

    Filter errors add "position" and "fragment", memory errors add "tier" and
    "suggestion", remote errors add "error_kind". A missing saved filter is an
    ordinary outcome and is reported with "status": "not_found".

    On success, adds "status": "success" to the result if not already present.

    Example:
        @handle_tool_errors
        async def my_tool(param: str) -> dict[str, Any]:
            # If this raises, caller gets {"status": "error", "message": "...", ...}
            result = await do_something(param)
            return {"data": result}
    """

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> dict[str, Any]:
        tool_name = func.__name__
        try:
            result = await func(*args, **kwargs)
            if isinstance(result, dict) and "status" not in result:
                result["status"] = "success"
            return result
        except FilterError as e:
            logger.info(f"Tool {tool_name} rejected filter: {e}")
            response: dict[str, Any] = {
                "status": "error",
                "message": str(e),
                "error_type": type(e).__name__,
                "position": e.position,
                "fragment": e.fragment,
            }
            if isinstance(e, LimitExceededError):
                response["limit"] = e.limit
                response["maximum"] = e.maximum
            return response
        except MemoryLimitExceeded as e:
            logger.warning(f"Tool {tool_name} denied by memory gate: {e.reason}")
            return {
                "status": "error",
                "message": e.reason,
                "error_type": "MemoryLimitExceeded",
                "tier": e.tier,
                "estimated_bytes": e.estimate.estimated_bytes,
                "suggestion": e.suggestion,
            }
        except RemoteError as e:
            logger.error(f"Tool {tool_name} remote failure ({e.kind}): {e}")
            return {
                "status": "error",
                "message": str(e),
                "error_type": type(e).__name__,
                "error_kind": e.kind,
            }
        except NotFoundError as e:
            logger.info(f"Tool {tool_name}: {e}")
            return {
                "status": "not_found",
                "message": str(e),
                "error_type": "NotFoundError",
            }
        except ConflictError as e:
            logger.info(f"Tool {tool_name} conflict: {e}")
            return {
                "status": "error",
                "message": str(e),
                "error_type": "ConflictError",
            }
        except ValueError as e:
            logger.error(f"Tool {tool_name} validation error: {e}")
            return {
                "status": "error",
                "message": str(e),
                "error_type": "ValidationError",
            }
        except Exception as e:
            logger.exception(f"Tool {tool_name} unexpected error: {e}")
            return {
                "status": "error",
                "message": f"Unexpected error: {e}",
                "error_type": type(e).__name__,
            }

    return wrapper  # type: ignore[return-value]
