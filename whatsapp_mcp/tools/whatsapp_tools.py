"""Command facade over the WhatsApp connection state machine.

Every operation returns a `ToolResponse`, the uniform
`{"content": [{"type": "text", "text": ...}]}` envelope. Precondition and
collaborator failures are embedded in the text ("Failed to <op>: <reason>"),
never raised; only malformed input is rejected earlier by the schema layer.

Example:
    tools = WhatsAppTools(machine)
    response = await tools.send_message("15551234567@c.us", "hello")
    print(response.first_text)
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from whatsapp_mcp.client.models import Chat, Contact, MediaData, Message, read_field
from whatsapp_mcp.client.protocol import MessageHandle
from whatsapp_mcp.client.state_machine import ConnectionStateMachine

logger = logging.getLogger(__name__)

DISCONNECT_CONFIRMATION = "YES_DISCONNECT_WHATSAPP"
LOGOUT_CONFIRMATION = "YES_LOGOUT_WHATSAPP"
DEFAULT_HISTORY_LIMIT = 50


@dataclass(frozen=True)
class ToolResponse:
    """Uniform tool result envelope."""

    content: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def text(cls, text: str) -> "ToolResponse":
        return cls(content=[{"type": "text", "text": text}])

    @classmethod
    def json(cls, payload: Any) -> "ToolResponse":
        return cls.text(json.dumps(payload, indent=2, default=str))

    @property
    def first_text(self) -> str:
        return self.content[0]["text"] if self.content else ""

    def to_dict(self) -> dict[str, Any]:
        return {"content": list(self.content)}


def _failure(operation: str, error: Exception) -> ToolResponse:
    message = getattr(error, "message", None) or str(error) or "Unknown error"
    return ToolResponse.text(f"Failed to {operation}: {message}")


class WhatsAppTools:
    """High-level WhatsApp operations exposed as MCP tools.

    Attributes:
        machine: Connection state machine owning the client
        public_url: Base URL of the HTTP auxiliary endpoints (QR views)
    """

    def __init__(self, machine: ConnectionStateMachine, public_url: str | None = None) -> None:
        self.machine = machine
        self.public_url = (public_url or "http://localhost:3000").rstrip("/")

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_message(self, to: str, message: str) -> ToolResponse:
        try:
            client = self.machine.ready_client()
            await client.send_message(to, message)
        except Exception as e:
            logger.error("Send message tool error: %s", e, extra={"tool": "send_message"})
            return _failure("send message", e)

        logger.info("Message sent to %s", to)
        return ToolResponse.text(f"Message sent successfully to {to}")

    async def get_contacts(self) -> ToolResponse:
        try:
            client = self.machine.ready_client()
            contacts = [Contact.from_raw(raw) for raw in await client.get_contacts()]
        except Exception as e:
            logger.error("Get contacts tool error: %s", e, extra={"tool": "get_contacts"})
            return _failure("get contacts", e)

        return ToolResponse.json([contact.to_dict() for contact in contacts])

    async def get_chats(self) -> ToolResponse:
        try:
            chats = await self._list_chats()
        except Exception as e:
            logger.error("Get chats tool error: %s", e, extra={"tool": "get_chats"})
            return _failure("get chats", e)

        return ToolResponse.json([chat.to_dict() for chat in chats])

    async def search_chats(self, query: str) -> ToolResponse:
        try:
            chats = [chat for chat in await self._list_chats() if chat.matches(query)]
        except Exception as e:
            logger.error("Search chats tool error: %s", e, extra={"tool": "search_chats"})
            return _failure("search chats", e)

        return ToolResponse.json(
            {
                "query": query,
                "resultCount": len(chats),
                "chats": [chat.to_dict() for chat in chats],
            }
        )

    async def _list_chats(self) -> list[Chat]:
        client = self.machine.ready_client()
        return [Chat.from_raw(raw) for raw in await client.get_chats()]

    async def get_chat_history(
        self,
        chat_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        include_media: bool = False,
    ) -> ToolResponse:
        """Return the `limit` most recent messages of a chat.

        With `include_media`, each attachment is downloaded and inlined as a
        data URL. A failed download leaves that message's media fields empty
        and does not affect the others.
        """
        try:
            client = self.machine.ready_client()
            chat = await client.get_chat_by_id(chat_id)
            raw_messages = list(await chat.fetch_messages(limit=limit))[-limit:]

            messages: list[Message] = []
            for raw in raw_messages:
                message = Message.from_raw(raw)
                if include_media and message.has_media:
                    message = await self._attach_media(raw, message)
                messages.append(message)
        except Exception as e:
            logger.error("Get chat history tool error: %s", e, extra={"tool": "get_chat_history"})
            return _failure("get chat history", e)

        return ToolResponse.json(
            {
                "chatId": chat_id,
                "messageCount": len(messages),
                "includeMedia": include_media,
                "messages": [message.to_dict() for message in messages],
            }
        )

    async def _attach_media(self, raw: MessageHandle, message: Message) -> Message:
        try:
            media = await raw.download_media()
        except Exception as e:
            logger.warning("Failed to download media for message %s: %s", message.id, e)
            return message

        if media is None:
            return message

        data = read_field(media, "data", "") or ""
        mimetype = read_field(media, "mimetype", "application/octet-stream")
        return message.with_media(
            f"data:{mimetype};base64,{data}",
            MediaData(mimetype=mimetype, filename=read_field(media, "filename"), size=len(data)),
        )

    # ------------------------------------------------------------------
    # Status views
    # ------------------------------------------------------------------

    async def get_connection_status(self) -> ToolResponse:
        return ToolResponse.json(self.machine.state.to_dict())

    async def get_auth_status(self) -> ToolResponse:
        state = self.machine.state
        if state.authenticated:
            message = "WhatsApp is authenticated and ready"
        elif state.qr_available:
            message = "QR code available - scan to authenticate"
        else:
            message = "Initializing WhatsApp client..."

        return ToolResponse.json(
            {
                "isConnected": state.connected,
                "isReady": state.ready,
                "isAuthenticated": state.authenticated,
                "qrAvailable": state.qr_available,
                "message": message,
            }
        )

    async def get_qr_code(self) -> ToolResponse:
        state = self.machine.state
        if state.authenticated:
            return ToolResponse.text("WhatsApp is already authenticated. No QR code needed.")

        if not state.pairing_image:
            text = (
                "QR code not yet generated. Please wait for WhatsApp to initialize.\n\n"
                f"You can also check: {self.public_url}/qr"
            )
            return ToolResponse.text(text)

        text = (
            "QR Code for WhatsApp Authentication:\n\n"
            f"{state.pairing_image}\n\n"
            "You can also access it at:\n"
            f"- JSON: {self.public_url}/qr\n"
            f"- Image: {self.public_url}/qr.png\n\n"
            "Scan this QR code with your WhatsApp mobile app to authenticate."
        )
        return ToolResponse.text(text)

    # ------------------------------------------------------------------
    # Session control
    # ------------------------------------------------------------------

    async def disconnect_whatsapp(self, confirmation: str) -> ToolResponse:
        if confirmation != DISCONNECT_CONFIRMATION:
            return ToolResponse.text(
                "CONFIRMATION REQUIRED\n\n"
                "To disconnect WhatsApp, you must provide the exact confirmation text.\n\n"
                "WARNING: This will:\n"
                "- Log out from WhatsApp Web\n"
                "- Clear your session data\n"
                "- Require QR code scan to reconnect\n"
                "- Stop all WhatsApp functionality\n\n"
                "If you're sure you want to disconnect, call this tool again with:\n"
                f'confirmation: "{DISCONNECT_CONFIRMATION}"'
            )

        state = self.machine.state
        if not state.connected and not state.ready:
            return ToolResponse.text("WhatsApp is not connected. Nothing to disconnect.")

        logger.info("User confirmed WhatsApp disconnection")
        try:
            await self.machine.disconnect()
        except Exception as e:
            logger.error("Disconnect tool error: %s", e, extra={"tool": "disconnect_whatsapp"})
            response = _failure("disconnect WhatsApp", e)
            return ToolResponse.text(
                response.first_text
                + "\n\nThe connection may still be active. Check status with get_auth_status."
            )

        return ToolResponse.text(
            "WhatsApp has been successfully disconnected.\n\n"
            "Session cleared, authentication removed, connection terminated.\n\n"
            "To reconnect:\n"
            "1. Wait for the automatic reconnection or call reconnect_whatsapp\n"
            "2. Use get_qr_code to get a new QR code\n"
            "3. Scan it with the WhatsApp mobile app"
        )

    async def logout_whatsapp(self, confirmation: str) -> ToolResponse:
        if confirmation != LOGOUT_CONFIRMATION:
            return ToolResponse.text(
                "CONFIRMATION REQUIRED\n\n"
                "To logout from WhatsApp (keeps connection but removes authentication), "
                "you must provide the exact confirmation text.\n\n"
                "WARNING: This will:\n"
                "- Log out from WhatsApp Web\n"
                "- Keep the connection active\n"
                "- Require QR code scan to re-authenticate\n\n"
                "If you're sure you want to logout, call this tool again with:\n"
                f'confirmation: "{LOGOUT_CONFIRMATION}"'
            )

        if not self.machine.state.authenticated:
            return ToolResponse.text("WhatsApp is not authenticated. Nothing to logout from.")

        logger.info("User confirmed WhatsApp logout")
        try:
            await self.machine.logout()
        except Exception as e:
            logger.error("Logout tool error: %s", e, extra={"tool": "logout_whatsapp"})
            return _failure("logout from WhatsApp", e)

        return ToolResponse.text(
            "WhatsApp logout successful.\n\n"
            "Authentication removed, connection still active. A new QR code will be generated.\n\n"
            "To re-authenticate, use get_qr_code and scan the code with the WhatsApp mobile app."
        )

    async def reconnect_whatsapp(self) -> ToolResponse:
        state = self.machine.state
        if state.ready and state.authenticated:
            return ToolResponse.text(
                "WhatsApp is already connected and authenticated. No reconnection needed."
            )

        if state.connected:
            return ToolResponse.text(
                "WhatsApp is connected but not authenticated.\n\n"
                "Use get_qr_code to get a QR code for authentication instead of reconnecting."
            )

        logger.info("User initiated manual WhatsApp reconnection")
        try:
            await self.machine.reconnect()
        except Exception as e:
            logger.error("Reconnect tool error: %s", e, extra={"tool": "reconnect_whatsapp"})
            response = _failure("reconnect WhatsApp", e)
            return ToolResponse.text(
                response.first_text
                + "\n\nReconnection may still be in progress. Check get_auth_status in a few seconds."
            )

        return ToolResponse.text(
            "WhatsApp reconnection initiated successfully.\n\n"
            "A new client is initializing. Use get_qr_code to fetch the pairing code "
            "and get_auth_status to monitor progress."
        )


__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "DISCONNECT_CONFIRMATION",
    "LOGOUT_CONFIRMATION",
    "ToolResponse",
    "WhatsAppTools",
]
