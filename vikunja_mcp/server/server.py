"""Base MCP server implementation.

This module provides the stdio MCP server that exposes the task filtering
tools. Each MCP connection is its own filter session: tools registered as
session scoped always receive the ``session_id`` bound to the calling
connection, whatever the caller sends. When the server stops, the saved filters
of every session it handed out are dropped.
"""

import json
import logging
import uuid
import weakref
from collections.abc import Callable, Sequence
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import EmbeddedResource, ImageContent, TextContent, Tool

from ..storage.filter_store import SessionFilterStore
from ..tools import ALL_TOOL_SCHEMAS, get_filter_service
from ..tools.filters import DEFAULT_SESSION_ID

logger = logging.getLogger(__name__)


class MCPServerBase:
    """
    Base class for MCP servers with tool registration.

    This provides a clean interface for building MCP servers with automatic
    tool registration and error handling.
    """

    def __init__(self, name: str, setup_defaults: bool = True):
        """
        Initialize MCP server.

        Args:
            name: Server name
            setup_defaults: Whether or not to set up the filtering tools
        """
        self.app = Server(name)
        self.tools: dict[str, dict[str, Any]] = {}
        self._tool_handlers: dict[str, Callable] = {}
        self._session_scoped: set[str] = set()
        self._connection_sessions: weakref.WeakKeyDictionary[Any, str] = (
            weakref.WeakKeyDictionary()
        )
        self._issued_sessions: set[str] = set()

        if setup_defaults:
            setup_default_tools(self)

    def register_tool(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        handler: Callable,
        session_scoped: bool = False,
    ):
        """
        Register a tool with the server.

        Args:
            name: Tool name
            description: Tool description
            input_schema: JSON schema for tool inputs
            handler: Async function to handle tool calls
            session_scoped: Pass the connection's session id to the handler
        """
        self.tools[name] = {
            "name": name,
            "description": description,
            "input_schema": input_schema,
        }
        self._tool_handlers[name] = handler
        if session_scoped:
            self._session_scoped.add(name)
        logger.info(f"Registered tool: {name}")

    def current_session_id(self) -> str:
        """Session id of the MCP connection serving the current request."""
        try:
            session = self.app.request_context.session
        except LookupError:
            self._issued_sessions.add(DEFAULT_SESSION_ID)
            return DEFAULT_SESSION_ID
        session_id = self._connection_sessions.get(session)
        if session_id is None:
            session_id = f"conn-{uuid.uuid4().hex[:16]}"
            self._connection_sessions[session] = session_id
            self._issued_sessions.add(session_id)
            logger.info(f"New MCP connection mapped to filter session {session_id}")
        return session_id

    async def dispatch(self, name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """Call a registered tool handler.

        Raises:
            ValueError: If the tool is unknown
        """
        if name not in self._tool_handlers:
            raise ValueError(f"Unknown tool: {name}")
        arguments = dict(arguments or {})
        if name in self._session_scoped:
            # Callers cannot choose another connection's session
            arguments["session_id"] = self.current_session_id()
        return await self._tool_handlers[name](**arguments)

    async def release_sessions(self, store: SessionFilterStore) -> int:
        """Drop the saved filters of every session this server handed out.

        Returns:
            Number of sessions that still existed in the store
        """
        dropped = 0
        for session_id in sorted(self._issued_sessions):
            if await store.drop_session(session_id):
                dropped += 1
        self._issued_sessions.clear()
        self._connection_sessions.clear()
        if dropped:
            logger.info(f"Released {dropped} filter session(s)")
        return dropped

    def setup_handlers(self) -> None:
        """Set up MCP handlers for tool listing and calling."""

        @self.app.list_tools()
        async def list_tools() -> list[Tool]:
            """List available MCP tools."""
            logger.info("Listing available tools")
            return [
                Tool(
                    name=tool_info["name"],
                    description=tool_info["description"],
                    inputSchema=tool_info["input_schema"],
                )
                for tool_info in self.tools.values()
            ]

        @self.app.call_tool()
        async def call_tool(
            name: str, arguments: Any
        ) -> Sequence[TextContent | ImageContent | EmbeddedResource]:
            """Execute a tool with the given arguments."""
            logger.info(f"Calling tool: {name} with arguments: {arguments}")

            try:
                result = await self.dispatch(name, arguments)
                return [TextContent(type="text", text=json.dumps(result, indent=2))]

            except (ValueError, TypeError) as e:
                logger.error(f"Validation error in {name}: {e}")
                return [
                    TextContent(
                        type="text",
                        text=json.dumps(
                            {
                                "status": "error",
                                "error": "validation_error",
                                "message": str(e),
                                "tool": name,
                            }
                        ),
                    )
                ]

            except Exception as e:
                logger.exception(f"Error executing tool {name}: {e}")
                return [
                    TextContent(
                        type="text",
                        text=json.dumps(
                            {
                                "status": "error",
                                "error": "execution_error",
                                "message": str(e),
                                "tool": name,
                            }
                        ),
                    )
                ]

    async def run(self) -> None:
        """Run the MCP server."""
        logger.info(f"Starting MCP Server: {self.app.name}")

        store = get_filter_service().store
        store.start_sweeper()
        try:
            # Run the server using stdio transport
            async with stdio_server() as (read_stream, write_stream):
                logger.info("MCP server running on stdio")
                await self.app.run(
                    read_stream,
                    write_stream,
                    self.app.create_initialization_options(),
                )
        finally:
            await store.stop_sweeper()
            await self.release_sessions(store)


def create_mcp_server(name: str, setup_defaults: bool = True) -> MCPServerBase:
    """
    Create a new MCP server.

    Example:
        ```python
        server = create_mcp_server("vikunja-filters")
        server.setup_handlers()
        await server.run()
        ```
    """
    return MCPServerBase(name, setup_defaults=setup_defaults)


def setup_default_tools(server: MCPServerBase) -> None:
    for schema in ALL_TOOL_SCHEMAS:
        server.register_tool(
            name=schema["name"],
            description=schema["description"],
            input_schema=schema["input_schema"],
            handler=schema["handler"],
            session_scoped=schema.get("session_scoped", False),
        )
