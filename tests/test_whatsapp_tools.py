"""Tests for the WhatsApp tool facade."""

import json

import pytest
from conftest import FakeChat, FakeClientFactory, FakeMedia, build_machine, make_message, pair

from whatsapp_mcp.tools import (
    DISCONNECT_CONFIRMATION,
    LOGOUT_CONFIRMATION,
    ToolResponse,
    WhatsAppTools,
)

CHAT_ID = "15550001111@c.us"


def make_chats() -> list[FakeChat]:
    return [
        FakeChat(
            id={"_serialized": CHAT_ID},
            name="Alice Example",
            unread_count=2,
            messages=[make_message(i) for i in range(1, 6)],
        ),
        FakeChat(id={"_serialized": "family@g.us"}, name="Family", is_group=True),
        FakeChat(id={"_serialized": "15550002222@c.us"}, name=None),
    ]


def payload(response: ToolResponse) -> dict:
    return json.loads(response.first_text)


async def ready_tools(factory: FakeClientFactory) -> WhatsAppTools:
    machine = build_machine(factory)
    await pair(machine, factory)
    return WhatsAppTools(machine, public_url="http://example.test:3000/")


class TestToolResponse:
    """Test the result envelope."""

    def test_text_envelope(self) -> None:
        """Test the content list shape."""
        response = ToolResponse.text("hello")

        assert response.to_dict() == {"content": [{"type": "text", "text": "hello"}]}
        assert response.first_text == "hello"

    def test_json_envelope_is_indented(self) -> None:
        """Test JSON payloads are pretty printed."""
        response = ToolResponse.json({"a": 1})

        assert response.first_text == '{\n  "a": 1\n}'


class TestMessaging:
    """Test messaging and chat queries."""

    @pytest.mark.asyncio
    async def test_send_message_success(self) -> None:
        """Test a message is delivered through the ready client."""
        factory = FakeClientFactory()
        tools = await ready_tools(factory)

        response = await tools.send_message("15551234567@c.us", "hi there")

        assert response.first_text == "Message sent successfully to 15551234567@c.us"
        assert factory.latest.sent == [("15551234567@c.us", "hi there")]

    @pytest.mark.asyncio
    async def test_send_message_not_ready(self, factory: FakeClientFactory) -> None:
        """Test a send before pairing reports a failure without raising."""
        tools = WhatsAppTools(build_machine(factory))

        response = await tools.send_message("15551234567@c.us", "hi")

        assert response.first_text == "Failed to send message: WhatsApp client is not ready"

    @pytest.mark.asyncio
    async def test_collaborator_failure_is_embedded(self) -> None:
        """Test a client error becomes the tool's text result."""
        factory = FakeClientFactory(send_error=RuntimeError("rate limited"))
        tools = await ready_tools(factory)

        response = await tools.send_message("15551234567@c.us", "hi")

        assert response.first_text == "Failed to send message: rate limited"

    @pytest.mark.asyncio
    async def test_get_contacts(self) -> None:
        """Test contacts are normalized to the wire shape."""
        factory = FakeClientFactory(
            contacts=[{"id": {"_serialized": "15550003333@c.us"}, "name": "Bob", "isMyContact": True}]
        )
        tools = await ready_tools(factory)

        contacts = payload(await tools.get_contacts())

        assert contacts == [
            {
                "id": "15550003333@c.us",
                "name": "Bob",
                "pushname": None,
                "isGroup": False,
                "isMyContact": True,
            }
        ]

    @pytest.mark.asyncio
    async def test_get_chats(self) -> None:
        """Test chats are listed with their ids."""
        factory = FakeClientFactory(chats=make_chats())
        tools = await ready_tools(factory)

        chats = payload(await tools.get_chats())

        assert [chat["id"] for chat in chats] == [CHAT_ID, "family@g.us", "15550002222@c.us"]
        assert chats[0]["unreadCount"] == 2
        assert chats[1]["isGroup"] is True

    @pytest.mark.asyncio
    async def test_search_chats_case_insensitive(self) -> None:
        """Test search matches names regardless of case."""
        factory = FakeClientFactory(chats=make_chats())
        tools = await ready_tools(factory)

        result = payload(await tools.search_chats("FAMILY"))

        assert result["query"] == "FAMILY"
        assert result["resultCount"] == 1
        assert result["chats"][0]["id"] == "family@g.us"

    @pytest.mark.asyncio
    async def test_search_chats_matches_id_of_unnamed_chat(self) -> None:
        """Test chats without a name are still found by id."""
        factory = FakeClientFactory(chats=make_chats())
        tools = await ready_tools(factory)

        result = payload(await tools.search_chats("0002222"))

        assert [chat["id"] for chat in result["chats"]] == ["15550002222@c.us"]

    @pytest.mark.asyncio
    async def test_search_chats_not_ready(self, factory: FakeClientFactory) -> None:
        """Test search before pairing."""
        tools = WhatsAppTools(build_machine(factory))

        response = await tools.search_chats("alice")

        assert response.first_text.startswith("Failed to search chats:")


class TestChatHistory:
    """Test chat history retrieval."""

    @pytest.mark.asyncio
    async def test_history_returns_most_recent(self) -> None:
        """Test the limit keeps the newest messages in order."""
        chats = make_chats()
        factory = FakeClientFactory(chats=chats)
        tools = await ready_tools(factory)

        result = payload(await tools.get_chat_history(CHAT_ID, limit=2))

        assert result["chatId"] == CHAT_ID
        assert result["messageCount"] == 2
        assert result["includeMedia"] is False
        assert [m["id"] for m in result["messages"]] == ["msg-4", "msg-5"]
        assert result["messages"][0]["body"] == "message 4"
        assert chats[0].fetch_limits == [2]

    @pytest.mark.asyncio
    async def test_history_unknown_chat(self) -> None:
        """Test a lookup failure is reported as text."""
        factory = FakeClientFactory(chats=make_chats())
        tools = await ready_tools(factory)

        response = await tools.get_chat_history("nobody@c.us")

        assert response.first_text == "Failed to get chat history: Chat nobody@c.us not found"

    @pytest.mark.asyncio
    async def test_media_is_inlined(self) -> None:
        """Test a downloaded attachment becomes a data URL."""
        chat = FakeChat(
            id={"_serialized": CHAT_ID},
            name="Alice",
            messages=[
                make_message(
                    1,
                    has_media=True,
                    type="image",
                    media=FakeMedia(mimetype="image/jpeg", data="QUJD", filename="cat.jpg"),
                )
            ],
        )
        factory = FakeClientFactory(chats=[chat])
        tools = await ready_tools(factory)

        result = payload(await tools.get_chat_history(CHAT_ID, include_media=True))

        message = result["messages"][0]
        assert message["mediaUrl"] == "data:image/jpeg;base64,QUJD"
        assert message["mediaData"] == {"mimetype": "image/jpeg", "filename": "cat.jpg", "size": 4}

    @pytest.mark.asyncio
    async def test_media_failure_is_isolated(self) -> None:
        """Test one failed download leaves the other messages intact."""
        chat = FakeChat(
            id={"_serialized": CHAT_ID},
            name="Alice",
            messages=[
                make_message(1, has_media=True, media_error=RuntimeError("download failed")),
                make_message(2, has_media=True, media=FakeMedia(mimetype="audio/ogg", data="AAAA")),
            ],
        )
        factory = FakeClientFactory(chats=[chat])
        tools = await ready_tools(factory)

        result = payload(await tools.get_chat_history(CHAT_ID, include_media=True))

        first, second = result["messages"]
        assert result["messageCount"] == 2
        assert first["mediaUrl"] is None
        assert first["mediaData"] is None
        assert second["mediaUrl"] == "data:audio/ogg;base64,AAAA"

    @pytest.mark.asyncio
    async def test_media_not_downloaded_by_default(self) -> None:
        """Test media fields stay empty without include_media."""
        chat = FakeChat(
            id={"_serialized": CHAT_ID},
            name="Alice",
            messages=[make_message(1, has_media=True, media=FakeMedia(mimetype="image/png", data="AA"))],
        )
        factory = FakeClientFactory(chats=[chat])
        tools = await ready_tools(factory)

        result = payload(await tools.get_chat_history(CHAT_ID))

        assert result["messages"][0]["hasMedia"] is True
        assert result["messages"][0]["mediaUrl"] is None


class TestStatusViews:
    """Test status and QR views."""

    @pytest.mark.asyncio
    async def test_connection_status(self) -> None:
        """Test the full state snapshot."""
        factory = FakeClientFactory()
        tools = await ready_tools(factory)

        status = payload(await tools.get_connection_status())

        assert status["isConnected"] is True
        assert status["isReady"] is True
        assert status["isAuthenticated"] is True
        assert status["qrCode"] is None
        assert status["lastSeen"] is not None

    @pytest.mark.asyncio
    async def test_auth_status_messages(self, factory: FakeClientFactory) -> None:
        """Test the human-readable auth message per state."""
        machine = build_machine(factory)
        tools = WhatsAppTools(machine)

        status = payload(await tools.get_auth_status())
        assert status["message"] == "Initializing WhatsApp client..."

        await machine.initialize()
        await factory.latest.emit("qr", "CODE")
        status = payload(await tools.get_auth_status())
        assert status["qrAvailable"] is True
        assert status["message"] == "QR code available - scan to authenticate"

        await factory.latest.emit("ready")
        status = payload(await tools.get_auth_status())
        assert status["message"] == "WhatsApp is authenticated and ready"

    @pytest.mark.asyncio
    async def test_qr_code_not_generated(self, factory: FakeClientFactory) -> None:
        """Test the QR tool before a pairing code exists."""
        tools = WhatsAppTools(build_machine(factory), public_url="http://example.test:3000/")

        text = (await tools.get_qr_code()).first_text

        assert text.startswith("QR code not yet generated")
        assert "http://example.test:3000/qr" in text

    @pytest.mark.asyncio
    async def test_qr_code_available(self, factory: FakeClientFactory) -> None:
        """Test the QR tool returns the image and the HTTP locations."""
        machine = build_machine(factory)
        tools = WhatsAppTools(machine)
        await machine.initialize()
        await factory.latest.emit("qr", "CODE")

        text = (await tools.get_qr_code()).first_text

        assert "data:image/png;base64,CODE" in text
        assert "http://localhost:3000/qr.png" in text

    @pytest.mark.asyncio
    async def test_qr_code_already_authenticated(self) -> None:
        """Test the QR tool after pairing."""
        tools = await ready_tools(FakeClientFactory())

        text = (await tools.get_qr_code()).first_text

        assert text == "WhatsApp is already authenticated. No QR code needed."


class TestSessionControl:
    """Test confirmation-gated and reconnect operations."""

    @pytest.mark.asyncio
    async def test_disconnect_requires_exact_confirmation(self) -> None:
        """Test a wrong confirmation changes nothing."""
        factory = FakeClientFactory()
        tools = await ready_tools(factory)

        text = (await tools.disconnect_whatsapp("yes")).first_text

        assert text.startswith("CONFIRMATION REQUIRED")
        assert DISCONNECT_CONFIRMATION in text
        assert tools.machine.state.ready
        assert factory.latest.destroy_calls == 0

    @pytest.mark.asyncio
    async def test_disconnect_when_not_connected(self, factory: FakeClientFactory) -> None:
        """Test disconnect with nothing connected."""
        tools = WhatsAppTools(build_machine(factory))

        text = (await tools.disconnect_whatsapp(DISCONNECT_CONFIRMATION)).first_text

        assert text == "WhatsApp is not connected. Nothing to disconnect."

    @pytest.mark.asyncio
    async def test_disconnect_success(self) -> None:
        """Test a confirmed disconnect resets the session."""
        factory = FakeClientFactory()
        tools = await ready_tools(factory)

        text = (await tools.disconnect_whatsapp(DISCONNECT_CONFIRMATION)).first_text

        assert "successfully disconnected" in text
        state = tools.machine.state
        assert not state.connected
        assert not state.authenticated
        await tools.machine.destroy()

    @pytest.mark.asyncio
    async def test_logout_requires_exact_confirmation(self) -> None:
        """Test a wrong logout confirmation changes nothing."""
        factory = FakeClientFactory()
        tools = await ready_tools(factory)

        text = (await tools.logout_whatsapp(DISCONNECT_CONFIRMATION)).first_text

        assert text.startswith("CONFIRMATION REQUIRED")
        assert LOGOUT_CONFIRMATION in text
        assert factory.latest.logout_calls == 0

    @pytest.mark.asyncio
    async def test_logout_when_not_authenticated(self, factory: FakeClientFactory) -> None:
        """Test logout before pairing."""
        tools = WhatsAppTools(build_machine(factory))

        text = (await tools.logout_whatsapp(LOGOUT_CONFIRMATION)).first_text

        assert text == "WhatsApp is not authenticated. Nothing to logout from."

    @pytest.mark.asyncio
    async def test_logout_success(self) -> None:
        """Test a confirmed logout keeps the connection."""
        factory = FakeClientFactory()
        tools = await ready_tools(factory)

        text = (await tools.logout_whatsapp(LOGOUT_CONFIRMATION)).first_text

        assert text.startswith("WhatsApp logout successful.")
        assert tools.machine.state.connected
        assert not tools.machine.state.authenticated

    @pytest.mark.asyncio
    async def test_reconnect_when_ready(self) -> None:
        """Test reconnect is a no-op on a ready session."""
        factory = FakeClientFactory()
        tools = await ready_tools(factory)

        text = (await tools.reconnect_whatsapp()).first_text

        assert "already connected and authenticated" in text
        assert len(factory.clients) == 1

    @pytest.mark.asyncio
    async def test_reconnect_when_only_connected(self, factory: FakeClientFactory) -> None:
        """Test reconnect points at the QR code while pairing is pending."""
        machine = build_machine(factory)
        await machine.initialize()
        tools = WhatsAppTools(machine)

        text = (await tools.reconnect_whatsapp()).first_text

        assert "connected but not authenticated" in text
        assert "get_qr_code" in text
        assert len(factory.clients) == 1

    @pytest.mark.asyncio
    async def test_reconnect_when_disconnected(self, factory: FakeClientFactory) -> None:
        """Test reconnect builds a fresh client."""
        machine = build_machine(factory)
        await machine.initialize()
        await factory.latest.emit("disconnected", "NAVIGATION")
        tools = WhatsAppTools(machine)

        text = (await tools.reconnect_whatsapp()).first_text

        assert "reconnection initiated successfully" in text
        assert len(factory.clients) == 2
        assert machine.state.connected
        await machine.destroy()

    @pytest.mark.asyncio
    async def test_reconnect_failure_is_reported(self, factory: FakeClientFactory) -> None:
        """Test a reconnect on a destroyed machine reports the failure."""
        machine = build_machine(factory)
        await machine.destroy()
        tools = WhatsAppTools(machine)

        text = (await tools.reconnect_whatsapp()).first_text

        assert text.startswith("Failed to reconnect WhatsApp:")
        assert "Reconnection may still be in progress" in text
