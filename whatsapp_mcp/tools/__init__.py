"""WhatsApp tools: the command facade and its MCP catalog."""

from whatsapp_mcp.tools.whatsapp_tools import (
    DISCONNECT_CONFIRMATION,
    LOGOUT_CONFIRMATION,
    ToolResponse,
    WhatsAppTools,
)

__all__ = [
    "DISCONNECT_CONFIRMATION",
    "LOGOUT_CONFIRMATION",
    "ToolResponse",
    "WhatsAppTools",
]
