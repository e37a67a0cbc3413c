"""
Logging utilities for the WhatsApp MCP server.
"""

from .logging import JSONFormatter, configure_logging

__all__ = ["JSONFormatter", "configure_logging"]
