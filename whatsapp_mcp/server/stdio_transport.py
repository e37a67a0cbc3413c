"""
stdio transport for MCP.

Single-stream local transport with no session concept: stdin carries
requests, stdout carries responses, logging goes to stderr.
"""

import logging

from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

logger = logging.getLogger(__name__)


async def run_stdio(server: Server) -> None:
    """Serve `server` over stdio until the client closes the stream."""
    async with stdio_server() as (read, write):
        logger.info("MCP Server connected via stdio transport")
        await server.run(read, write, server.create_initialization_options())
    logger.info("stdio transport closed")


__all__ = ["run_stdio"]
