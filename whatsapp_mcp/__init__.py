"""WhatsApp MCP - bridge a WhatsApp Web session to the Model Context Protocol.

Packages:
- client: connection state machine and the collaborator client protocol
- tools: command facade and tool catalog
- server: MCP front-end, stdio / streamable HTTP transports, configuration
- observability: logging setup
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
