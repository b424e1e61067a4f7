"""Task filtering tools.

These tools let an agent filter Vikunja tasks with a small expression
language and keep named filters for the rest of its session.

Saved filters are isolated per session: each MCP connection gets its own
session id from the server, and a filter saved in one session is invisible
to every other session.

Configure via environment variables:
    VIKUNJA_URL=https://vikunja.example.com
    VIKUNJA_API_TOKEN=...
"""

import logging
import threading
from typing import Any

from ..core.config import settings
from ..core.vikunja_client import VikunjaClient
from ..filtering.service import FetchScope, TaskFilterService, build_filter_service
from ..utils.errors import MissingAPIKeyError
from ..utils.tool_decorators import handle_tool_errors

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"

_service: TaskFilterService | None = None
_service_lock = threading.Lock()


def get_filter_service() -> TaskFilterService:
    """Get or create the process-wide filter service.

    Raises:
        MissingAPIKeyError: If VIKUNJA_URL or VIKUNJA_API_TOKEN is not set
    """
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                if not settings.vikunja_url:
                    raise MissingAPIKeyError("VIKUNJA_URL")
                if not settings.vikunja_api_token:
                    raise MissingAPIKeyError("VIKUNJA_API_TOKEN")
                client = VikunjaClient(
                    settings.vikunja_url,
                    settings.vikunja_api_token,
                    timeout=settings.request_timeout,
                    page_size=settings.page_size,
                    max_pages=settings.max_pages,
                )
                _service = build_filter_service(settings, client)
    return _service


def configure_filter_service(service: TaskFilterService | None) -> None:
    """Replace the process-wide filter service (None resets it)."""
    global _service
    with _service_lock:
        _service = service


@handle_tool_errors
async def filter_tasks(
    filter: str | None = None,
    filter_id: str | None = None,
    project_id: int | None = None,
    allow_high_memory: bool = False,
    session_id: str = DEFAULT_SESSION_ID,
) -> dict[str, Any]:
    """
    Filter tasks with an expression or a saved filter.

    The remote API evaluates the filter when it can. Otherwise tasks are
    fetched and filtered locally, which is reported in "provenance".

    Args:
        filter: Filter expression, e.g. "done = false && priority >= 3"
        filter_id: Id of a filter saved in this session (instead of filter)
        project_id: Only consider tasks of this project
        allow_high_memory: Proceed even if local filtering is estimated to
            need a lot of memory
        session_id: Session identifier (supplied by the server)

    Returns:
        Matching tasks with count, provenance and warnings
    """
    service = get_filter_service()
    result = await service.filter_tasks(
        session_id,
        raw_filter=filter,
        filter_id=filter_id,
        scope=FetchScope(project_id=project_id),
        allow_high_memory=allow_high_memory,
    )
    return result.to_dict()


@handle_tool_errors
async def validate_filter(filter: str, session_id: str = DEFAULT_SESSION_ID) -> dict[str, Any]:
    """Check a filter expression without running it."""
    service = get_filter_service()
    return {"valid": True, **service.validate_filter(filter)}


@handle_tool_errors
async def save_filter(name: str, filter: str, session_id: str = DEFAULT_SESSION_ID) -> dict[str, Any]:
    """
    Save a filter under a name for reuse in this session.

    Args:
        name: Name unique within the session
        filter: Filter expression (validated before saving)
        session_id: Session identifier (supplied by the server)

    Returns:
        The saved filter including its id
    """
    service = get_filter_service()
    saved = await service.save_filter(session_id, name, filter)
    return {"filter": saved.to_dict(), "message": f"Saved filter '{saved.name}'"}


@handle_tool_errors
async def update_filter(
    filter_id: str,
    name: str | None = None,
    filter: str | None = None,
    session_id: str = DEFAULT_SESSION_ID,
) -> dict[str, Any]:
    """Rename a saved filter and/or replace its expression."""
    service = get_filter_service()
    saved = await service.update_filter(session_id, filter_id, name=name, raw_filter=filter)
    return {"filter": saved.to_dict(), "message": f"Updated filter '{saved.name}'"}


@handle_tool_errors
async def list_filters(session_id: str = DEFAULT_SESSION_ID) -> dict[str, Any]:
    service = get_filter_service()
    saved = await service.list_filters(session_id)
    return {"filters": [f.to_dict() for f in saved], "count": len(saved)}


@handle_tool_errors
async def get_filter(filter_id: str, session_id: str = DEFAULT_SESSION_ID) -> dict[str, Any]:
    service = get_filter_service()
    saved = await service.get_filter(session_id, filter_id)
    return {"filter": saved.to_dict()}


@handle_tool_errors
async def delete_filter(filter_id: str, session_id: str = DEFAULT_SESSION_ID) -> dict[str, Any]:
    """Delete a saved filter from this session."""
    service = get_filter_service()
    await service.delete_filter(session_id, filter_id)
    return {"message": f"Deleted filter {filter_id}"}


@handle_tool_errors
async def filter_metrics(reset: bool = False) -> dict[str, Any]:
    """
    Report timing and counters for filter runs since startup.

    Args:
        reset: Clear the counters after reading them

    Returns:
        Per-provenance counts and timings plus failures by kind
    """
    metrics = get_filter_service().hybrid.metrics
    snapshot = metrics.snapshot()
    if reset:
        metrics.reset()
        logger.info("Filter metrics reset")
    return {"metrics": snapshot}


_FILTER_ID_PROPERTY = {
    "type": "string",
    "description": "Id of a saved filter (from save_filter or list_filters)",
}
_FILTER_PROPERTY = {
    "type": "string",
    "maxLength": 4096,
    "description": (
        "Filter expression. Conditions are 'field operator value' joined with "
        "'&&'/'AND' and '||'/'OR', grouped with parentheses. Operators: = != > >= "
        "< <= contains in 'not in' between. Examples: \"done = false && priority >= 3\", "
        "\"labels in (bug, urgent)\", \"due_date between (2024-01-01, now+7d)\""
    ),
}

TOOL_SCHEMAS = [
    {
        "name": "filter_tasks",
        "description": (
            "Filter Vikunja tasks with a filter expression or a saved filter. "
            "Filters run on the Vikunja server when possible and fall back to local "
            "filtering otherwise; the response says which happened in 'provenance'. "
            "Local filtering of very large task sets is refused unless "
            "allow_high_memory is set."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "filter": _FILTER_PROPERTY,
                "filter_id": _FILTER_ID_PROPERTY,
                "project_id": {
                    "type": "integer",
                    "description": "Only consider tasks in this project",
                },
                "allow_high_memory": {
                    "type": "boolean",
                    "default": False,
                    "description": "Allow local filtering even when estimated memory use is high",
                },
            },
        },
        "handler": filter_tasks,
        "session_scoped": True,
    },
    {
        "name": "validate_filter",
        "description": (
            "Validate a filter expression without running it. Returns the normalized "
            "filter, its size, and whether the Vikunja server can evaluate it."
        ),
        "input_schema": {
            "type": "object",
            "properties": {"filter": _FILTER_PROPERTY},
            "required": ["filter"],
        },
        "handler": validate_filter,
        "session_scoped": True,
    },
    {
        "name": "save_filter",
        "description": (
            "Save a filter expression under a name for reuse. Saved filters belong to "
            "the current session only and expire when the session goes idle."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "maxLength": 100,
                    "description": "Name for the filter, unique within the session",
                },
                "filter": _FILTER_PROPERTY,
            },
            "required": ["name", "filter"],
        },
        "handler": save_filter,
        "session_scoped": True,
    },
    {
        "name": "update_filter",
        "description": "Rename a saved filter and/or replace its expression.",
        "input_schema": {
            "type": "object",
            "properties": {
                "filter_id": _FILTER_ID_PROPERTY,
                "name": {"type": "string", "maxLength": 100, "description": "New name"},
                "filter": _FILTER_PROPERTY,
            },
            "required": ["filter_id"],
        },
        "handler": update_filter,
        "session_scoped": True,
    },
    {
        "name": "list_filters",
        "description": "List the filters saved in the current session.",
        "input_schema": {"type": "object", "properties": {}},
        "handler": list_filters,
        "session_scoped": True,
    },
    {
        "name": "get_filter",
        "description": "Get a saved filter by id.",
        "input_schema": {
            "type": "object",
            "properties": {"filter_id": _FILTER_ID_PROPERTY},
            "required": ["filter_id"],
        },
        "handler": get_filter,
        "session_scoped": True,
    },
    {
        "name": "delete_filter",
        "description": "Delete a saved filter from the current session.",
        "input_schema": {
            "type": "object",
            "properties": {"filter_id": _FILTER_ID_PROPERTY},
            "required": ["filter_id"],
        },
        "handler": delete_filter,
        "session_scoped": True,
    },
    {
        "name": "filter_metrics",
        "description": (
            "Show how filters have been running: counts and timings per provenance "
            "(server, client, hybrid-merged), failures by kind, and how often local "
            "evaluation was needed."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "reset": {
                    "type": "boolean",
                    "default": False,
                    "description": "Clear the counters after reading them",
                },
            },
        },
        "handler": filter_metrics,
        "session_scoped": False,
    },
]
