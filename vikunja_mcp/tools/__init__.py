"""MCP tools for filtering Vikunja tasks."""

from .filters import (
    TOOL_SCHEMAS,
    configure_filter_service,
    delete_filter,
    filter_metrics,
    filter_tasks,
    get_filter,
    get_filter_service,
    list_filters,
    save_filter,
    update_filter,
    validate_filter,
)

ALL_TOOL_SCHEMAS: list[dict] = [*TOOL_SCHEMAS]

__all__ = [
    "ALL_TOOL_SCHEMAS",
    "configure_filter_service",
    "get_filter_service",
    "filter_tasks",
    "validate_filter",
    "save_filter",
    "update_filter",
    "list_filters",
    "get_filter",
    "delete_filter",
    "filter_metrics",
]
