"""MCP server for nano-banana (Gemini 2.5 Flash Image) generation and editing.

The FastMCP instance owns the transport and logging. Tool listing and tool calls
are served straight from the shared ``ToolDispatcher``, which holds the
credential and the last produced image for the process lifetime, so its
argument checks and JSON-RPC error codes reach the client unchanged.
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from fastmcp import FastMCP
from mcp import types

from .config import prime_dotenv_env
from .dispatcher import ToolDispatcher

LOG_LEVEL_ENV = "NANO_BANANA_LOG_LEVEL"

logger = logging.getLogger(__name__)


def create_server(tool_dispatcher: Optional[ToolDispatcher] = None) -> FastMCP:
    """Build a FastMCP server whose tools are served by ``tool_dispatcher``.

    The list/call handlers are installed on the low-level server directly: an
    ``McpError`` raised by the dispatcher is then sent as a JSON-RPC error with
    its code instead of being folded into an error tool result.
    """
    tool_dispatcher = tool_dispatcher or ToolDispatcher()
    server = FastMCP("nano-banana")

    async def list_tools(_request: types.ListToolsRequest) -> types.ServerResult:
        return types.ServerResult(types.ListToolsResult(tools=tool_dispatcher.list_tools()))

    async def call_tool(request: types.CallToolRequest) -> types.ServerResult:
        content = tool_dispatcher.call(request.params.name, request.params.arguments)
        return types.ServerResult(types.CallToolResult(content=content, isError=False))

    handlers = server._mcp_server.request_handlers  # pylint: disable=protected-access
    handlers[types.ListToolsRequest] = list_tools
    handlers[types.CallToolRequest] = call_tool
    return server


# Create the MCP server instance (logging configured at run-time)
dispatcher = ToolDispatcher()
mcp = create_server(dispatcher)


def configure_logging() -> None:
    """Send logs to stderr; stdout carries the MCP stdio transport."""
    logging.basicConfig(
        level=os.getenv(LOG_LEVEL_ENV, "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main() -> None:
    """Resolve the credential and run the MCP server via stdio."""
    configure_logging()
    prime_dotenv_env()
    source = dispatcher.store.load()
    logger.info("nano-banana MCP server starting (credential source: %s)", source.value)
    mcp.run(show_banner=False, log_level=os.getenv(LOG_LEVEL_ENV, "WARNING").upper())


# Entry point for running the server
if __name__ == "__main__":
    main()


__all__ = ["create_server", "dispatcher", "main", "mcp"]
