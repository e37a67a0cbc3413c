"""WhatsApp MCP server implementation.

This module provides the main MCP server wrapper that:
1. Builds the connection state machine from the WhatsApp configuration
2. Wraps it in the command facade (WhatsAppTools)
3. Registers the fixed tool catalog on a low-level MCP server
4. Runs exactly one transport (stdio or streamable HTTP) per process

Architecture:
- MCP client -> transport -> WhatsAppMCPServer -> WhatsAppTools -> ConnectionStateMachine
- Collaborator events are consumed by the state machine only

Example:
    config = load_config()
    server = WhatsAppMCPServer(config)
    await server.start()
"""

import functools
import logging
from collections.abc import Iterable
from typing import Any

from mcp.server.lowlevel import Server
from mcp.shared.exceptions import McpError
from mcp.types import INVALID_PARAMS, CallToolRequest, ErrorData, ServerResult, TextContent, Tool
from pydantic import ValidationError

from whatsapp_mcp.client.errors import ClientFactoryError
from whatsapp_mcp.client.models import Message
from whatsapp_mcp.client.protocol import ClientFactory, load_client_factory
from whatsapp_mcp.client.state_machine import ConnectionStateMachine
from whatsapp_mcp.server.config import Config
from whatsapp_mcp.server.http_transport import run_http_server
from whatsapp_mcp.server.session_manager import SessionTransportManager
from whatsapp_mcp.server.stdio_transport import run_stdio
from whatsapp_mcp.tools.catalog import get_tool_catalog
from whatsapp_mcp.tools.whatsapp_tools import ToolResponse, WhatsAppTools

logger = logging.getLogger(__name__)


class WhatsAppMCPServer:
    """MCP server backed by a WhatsApp Web session.

    Attributes:
        config: Loaded configuration
        machine: Connection state machine
        tools: Command facade
        server: Low-level MCP server instance
        session_manager: HTTP session manager (HTTP transport only)
    """

    def __init__(self, config: Config, client_factory: ClientFactory | None = None) -> None:
        """Initialize the server.

        Args:
            config: Configuration
            client_factory: Zero-argument client factory (default: whatsapp.client_factory)

        Raises:
            ClientFactoryError: If no client factory is configured or it cannot be loaded
        """
        self.config = config
        self.machine = ConnectionStateMachine(
            client_factory or self._load_client_factory(),
            reconnect_delay=config.whatsapp.reconnect_delay_seconds,
            retry_backoff=config.whatsapp.retry_backoff_seconds,
            init_timeout=config.whatsapp.auth_timeout_seconds,
            print_pairing=config.whatsapp.print_qr,
        )
        self.tools = WhatsAppTools(self.machine, public_url=config.http.base_url)
        self.catalog = get_tool_catalog()
        self.session_manager: SessionTransportManager | None = None
        self._stopped = False

        self.server = Server(config.server.name, version=config.server.version)
        logger.info("Created MCP server: %s %s", config.server.name, config.server.version)

        self._register_tools()
        self._register_log_listeners()

    def _load_client_factory(self) -> ClientFactory:
        path = self.config.whatsapp.client_factory
        if not path:
            msg = (
                "No WhatsApp client factory configured. Set whatsapp.client_factory "
                "in whatsapp_mcp.yml or the WHATSAPP_CLIENT_FACTORY environment variable"
            )
            raise ClientFactoryError(msg)
        return functools.partial(load_client_factory(path), self.config.whatsapp)

    def _register_tools(self) -> None:
        """Register list_tools / call_tool handlers.

        Arguments are validated ahead of the SDK's call_tool handler, so unknown
        tools and malformed arguments are answered with a JSON-RPC
        INVALID_PARAMS error rather than an isError tool result.
        """

        @self.server.list_tools()
        async def list_tools() -> Iterable[Tool]:
            return self._build_tool_list()

        @self.server.call_tool(validate_input=False)
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            return await self._handle_tool_call(name, arguments)

        dispatch = self.server.request_handlers[CallToolRequest]

        async def validated_call_tool(req: CallToolRequest) -> ServerResult:
            self._validate_arguments(req.params.name, req.params.arguments)
            return await dispatch(req)

        self.server.request_handlers[CallToolRequest] = validated_call_tool
        logger.info("Registered %s MCP tools", len(self.catalog))

    def _register_log_listeners(self) -> None:
        self.machine.on("qr", self._on_qr)
        self.machine.on("ready", self._on_ready)
        self.machine.on("disconnected", self._on_disconnected)
        self.machine.on("message", self._on_message)

    def _on_qr(self, code: str, image: str | None) -> None:
        if self.config.server.transport == "http":
            logger.info(
                "QR code generated - open %s/qr.html to scan it", self.config.http.base_url,
                extra={"event": "qr"},
            )
        else:
            logger.info("QR code generated - use the get_qr_code tool to scan it", extra={"event": "qr"})

    def _on_ready(self) -> None:
        logger.info("WhatsApp client is ready!", extra={"event": "ready"})

    def _on_disconnected(self, reason: str) -> None:
        logger.warning("WhatsApp client disconnected: %s", reason, extra={"event": "disconnected"})

    def _on_message(self, message: Message) -> None:
        logger.info("New message from %s", message.sender, extra={"event": "message"})

    def _build_tool_list(self) -> list[Tool]:
        return [
            Tool(name=name, description=meta["description"], inputSchema=meta["parameters"])
            for name, meta in self.catalog.items()
        ]

    def _validate_arguments(self, tool_name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """Check the tool name and validate its arguments against the request model.

        Returns:
            Keyword arguments for the facade method

        Raises:
            McpError: INVALID_PARAMS if the tool is unknown or the arguments are malformed
        """
        meta = self.catalog.get(tool_name)
        if meta is None:
            msg = f"Tool '{tool_name}' not found. Available tools: {list(self.catalog)}"
            raise McpError(ErrorData(code=INVALID_PARAMS, message=msg))

        request_model = meta["request"]
        if request_model is None:
            return {}

        try:
            return request_model.model_validate(self._sanitize_arguments(arguments or {})).model_dump()
        except ValidationError as e:
            logger.warning("Input validation failed for tool '%s': %s", tool_name, e, extra={"tool": tool_name})
            msg = f"Input validation failed for tool '{tool_name}': {e}"
            raise McpError(ErrorData(code=INVALID_PARAMS, message=msg)) from e

    async def _handle_tool_call(self, tool_name: str, arguments: dict[str, Any] | None) -> list[TextContent]:
        """Dispatch a validated tool call to the facade."""
        logger.info("Tool call: %s", tool_name, extra={"tool": tool_name})

        kwargs = self._validate_arguments(tool_name, arguments)
        handler = getattr(self.tools, tool_name)
        response: ToolResponse = await handler(**kwargs)
        return [TextContent(type="text", text=item["text"]) for item in response.content]

    def _sanitize_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Trim whitespace from string values and drop None values."""
        sanitized = {}
        for key, value in arguments.items():
            if value is None:
                continue
            sanitized[key] = value.strip() if isinstance(value, str) else value
        return sanitized

    def create_session_manager(self) -> SessionTransportManager:
        """Build the HTTP session manager for this server."""
        self.session_manager = SessionTransportManager(
            self.server,
            json_response=self.config.http.json_response,
            max_events_per_session=self.config.http.max_events_per_session,
        )
        return self.session_manager

    async def start(self, transport: str | None = None) -> None:
        """Initialize WhatsApp, then serve the selected transport until it ends.

        Args:
            transport: "stdio" | "http" (default: server.transport)
        """
        mode = transport or self.config.server.transport
        logger.info("Starting WhatsApp MCP Server with %s transport...", mode)

        await self.machine.initialize()
        try:
            if mode == "stdio":
                await run_stdio(self.server)
            elif mode == "http":
                await run_http_server(self, self.config.http.host, self.config.http.port)
            else:
                msg = f"Unknown transport '{mode}'"
                raise ValueError(msg)
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Close all HTTP sessions, then destroy the WhatsApp client. Idempotent."""
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping WhatsApp MCP Server...")
        if self.session_manager is not None:
            await self.session_manager.close_all()
        await self.machine.destroy()
        logger.info("WhatsApp MCP Server stopped")


__all__ = ["WhatsAppMCPServer"]
