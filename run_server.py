#!/usr/bin/env python3
"""Startup script for the nano-banana MCP Server.

This script starts the MCP server using stdio transport, which is the
standard way to connect MCP servers to AI assistants like Claude Desktop,
Cursor, or other MCP-compatible clients.

Usage:
    python run_server.py

Or make executable and run directly:
    chmod +x run_server.py
    ./run_server.py
"""
import sys
from pathlib import Path

# Add the repository root to path so imports work without installing
repo_dir = Path(__file__).resolve().parent
if str(repo_dir) not in sys.path:
    sys.path.insert(0, str(repo_dir))

from nano_banana_mcp.server import main  # pylint: disable=wrong-import-position

if __name__ == "__main__":
    main()
