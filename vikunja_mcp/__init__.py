"""Vikunja MCP - task filtering server built on MCP."""

__version__ = "0.1.0"

from .core.config import Settings
from .filtering.service import FetchScope, TaskFilterService, build_filter_service
from .server.server import create_mcp_server

__all__ = [
    "Settings",
    "FetchScope",
    "TaskFilterService",
    "build_filter_service",
    "create_mcp_server",
]
