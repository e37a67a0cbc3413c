"""MCP Server Core - Protocol Implementation.

This package contains the MCP front-end of the WhatsApp bridge:
- mcp_server.py: WhatsAppMCPServer, tool registration and dispatch
- stdio_transport.py: stdio transport
- http_transport.py: streamable HTTP transport and auxiliary QR/status views
- session_manager.py: per-session routing for the HTTP transport
- event_store.py: resumable per-session event history
- schemas.py: tool request schemas
- config.py: server configuration
"""
