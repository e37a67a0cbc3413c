"""Shared fixtures: an in-memory WhatsApp Web client and helpers."""

import asyncio
import inspect
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from whatsapp_mcp.client.state_machine import ConnectionStateMachine

TOOL_NAMES = (
    "send_message",
    "get_contacts",
    "get_chats",
    "get_connection_status",
    "get_chat_history",
    "search_chats",
    "get_qr_code",
    "get_auth_status",
    "disconnect_whatsapp",
    "logout_whatsapp",
    "reconnect_whatsapp",
)

CONFIG_ENV_VARS = (
    "MCP_SERVER_NAME",
    "MCP_SERVER_VERSION",
    "MCP_TRANSPORT",
    "MCP_HOST",
    "MCP_PORT",
    "MCP_LOG_LEVEL",
    "LOG_LEVEL",
    "MCP_JSON_RESPONSE",
    "WHATSAPP_SESSION_NAME",
    "WHATSAPP_AUTH_TIMEOUT",
    "WHATSAPP_CLIENT_FACTORY",
)


@dataclass
class FakeMedia:
    mimetype: str
    data: str
    filename: str | None = None


@dataclass
class FakeMessage:
    """Collaborator message (attribute layout of a WhatsApp Web library)."""

    id: dict[str, str]
    from_: str
    body: str
    timestamp: int
    to: str = "me@c.us"
    has_media: bool = False
    type: str = "chat"
    author: str | None = None
    is_forwarded: bool = False
    media: FakeMedia | None = None
    media_error: Exception | None = None

    async def download_media(self) -> FakeMedia | None:
        if self.media_error is not None:
            raise self.media_error
        return self.media


def make_message(index: int, chat_id: str = "15550001111@c.us", **kwargs: Any) -> FakeMessage:
    return FakeMessage(
        id={"_serialized": f"msg-{index}"},
        from_=chat_id,
        body=f"message {index}",
        timestamp=1700000000 + index,
        **kwargs,
    )


@dataclass
class FakeChat:
    id: dict[str, str]
    name: str | None
    is_group: bool = False
    unread_count: int = 0
    messages: list[FakeMessage] = field(default_factory=list)
    fetch_limits: list[int] = field(default_factory=list)

    async def fetch_messages(self, limit: int) -> list[FakeMessage]:
        self.fetch_limits.append(limit)
        return self.messages[-limit:]


class FakeWhatsAppClient:
    """In-memory collaborator client; `emit` awaits whatever listeners return."""

    def __init__(
        self,
        *,
        chats: list[FakeChat] | None = None,
        contacts: list[dict[str, Any]] | None = None,
        initialize_delay: float = 0.0,
        initialize_error: Exception | None = None,
        send_error: Exception | None = None,
    ) -> None:
        self.listeners: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self.chats = chats or []
        self.contacts = contacts or []
        self.initialize_delay = initialize_delay
        self.initialize_error = initialize_error
        self.send_error = send_error

        self.initialize_calls = 0
        self.destroy_calls = 0
        self.logout_calls = 0
        self.sent: list[tuple[str, str]] = []

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        self.listeners[event].append(listener)

    async def emit(self, event: str, *args: Any) -> None:
        for listener in list(self.listeners[event]):
            result = listener(*args)
            if inspect.isawaitable(result):
                await result

    async def initialize(self) -> None:
        self.initialize_calls += 1
        if self.initialize_delay:
            await asyncio.sleep(self.initialize_delay)
        if self.initialize_error is not None:
            raise self.initialize_error

    async def send_message(self, to: str, body: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((to, body))

    async def get_contacts(self) -> list[dict[str, Any]]:
        return self.contacts

    async def get_chats(self) -> list[FakeChat]:
        return self.chats

    async def get_chat_by_id(self, chat_id: str) -> FakeChat:
        for chat in self.chats:
            if chat.id["_serialized"] == chat_id:
                return chat
        msg = f"Chat {chat_id} not found"
        raise LookupError(msg)

    async def logout(self) -> None:
        self.logout_calls += 1

    async def destroy(self) -> None:
        self.destroy_calls += 1


class FakeClientFactory:
    """Builds FakeWhatsAppClient instances and remembers them.

    `initialize_errors` maps a 1-based build number to the error that
    client's initialize() raises.
    """

    def __init__(self, initialize_errors: dict[int, Exception] | None = None, **client_kwargs: Any) -> None:
        self.initialize_errors = initialize_errors or {}
        self.client_kwargs = client_kwargs
        self.clients: list[FakeWhatsAppClient] = []

    def __call__(self) -> FakeWhatsAppClient:
        build_number = len(self.clients) + 1
        kwargs = dict(self.client_kwargs)
        if build_number in self.initialize_errors:
            kwargs["initialize_error"] = self.initialize_errors[build_number]
        client = FakeWhatsAppClient(**kwargs)
        self.clients.append(client)
        return client

    @property
    def latest(self) -> FakeWhatsAppClient:
        return self.clients[-1]


def fake_renderer(code: str) -> str:
    return f"data:image/png;base64,{code}"


def build_machine(factory: FakeClientFactory, **kwargs: Any) -> ConnectionStateMachine:
    options: dict[str, Any] = {
        "reconnect_delay": 0.05,
        "retry_backoff": 0.05,
        "pairing_renderer": fake_renderer,
    }
    options.update(kwargs)
    return ConnectionStateMachine(factory, **options)


async def pair(machine: ConnectionStateMachine, factory: FakeClientFactory, code: str = "PAIRING-CODE") -> None:
    """Initialize, then drive qr -> authenticated -> ready."""
    await machine.initialize()
    client = factory.latest
    await client.emit("qr", code)
    await client.emit("authenticated")
    await client.emit("ready")


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate until it holds or fail after timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            msg = "condition not met before timeout"
            raise AssertionError(msg)
        await asyncio.sleep(0.01)


@pytest.fixture
def factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
