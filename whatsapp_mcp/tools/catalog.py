"""
Tool Catalog - Defines the WhatsApp tools exposed over MCP.

This module provides:
- Tool names, one-line descriptions and input schemas
- The request model used to validate each tool's arguments
"""

import logging
from typing import Any

from whatsapp_mcp.server.schemas import (
    ChatHistoryRequest,
    ConfirmationRequest,
    SearchChatsRequest,
    SendMessageRequest,
    input_schema,
)
from whatsapp_mcp.tools.whatsapp_tools import DISCONNECT_CONFIRMATION, LOGOUT_CONFIRMATION

logger = logging.getLogger(__name__)


def get_tool_catalog() -> dict[str, dict[str, Any]]:
    """
    Get the WhatsApp tool catalog.

    Returns:
        Dictionary of tool name -> {"description", "parameters", "request"}
    """
    catalog = {
        "send_message": {
            "description": "Send a WhatsApp message to a contact or group",
            "parameters": input_schema(SendMessageRequest),
            "request": SendMessageRequest,
        },
        "get_contacts": {
            "description": "Get all WhatsApp contacts",
            "parameters": input_schema(None),
            "request": None,
        },
        "get_chats": {
            "description": "Get all WhatsApp chats and conversations",
            "parameters": input_schema(None),
            "request": None,
        },
        "get_connection_status": {
            "description": "Get the current WhatsApp connection status",
            "parameters": input_schema(None),
            "request": None,
        },
        "get_chat_history": {
            "description": "Get message history for a specific WhatsApp chat or contact",
            "parameters": input_schema(ChatHistoryRequest),
            "request": ChatHistoryRequest,
        },
        "search_chats": {
            "description": "Search for WhatsApp chats by name or phone number",
            "parameters": input_schema(SearchChatsRequest),
            "request": SearchChatsRequest,
        },
        "get_qr_code": {
            "description": "Get WhatsApp authentication QR code for scanning",
            "parameters": input_schema(None),
            "request": None,
        },
        "get_auth_status": {
            "description": "Get WhatsApp authentication status and connection state",
            "parameters": input_schema(None),
            "request": None,
        },
        "disconnect_whatsapp": {
            "description": "Disconnect from WhatsApp completely (requires confirmation)",
            "parameters": input_schema(ConfirmationRequest, confirmation=DISCONNECT_CONFIRMATION),
            "request": ConfirmationRequest,
        },
        "logout_whatsapp": {
            "description": "Logout from WhatsApp but keep connection (requires confirmation)",
            "parameters": input_schema(ConfirmationRequest, confirmation=LOGOUT_CONFIRMATION),
            "request": ConfirmationRequest,
        },
        "reconnect_whatsapp": {
            "description": "Manually reconnect WhatsApp client (useful after disconnect)",
            "parameters": input_schema(None),
            "request": None,
        },
    }
    logger.debug("Tool catalog: %s tools", len(catalog))
    return catalog


__all__ = ["get_tool_catalog"]
