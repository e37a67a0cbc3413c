"""Protocol for the WhatsApp Web client collaborator.

The connection state machine never talks to a concrete client library. It
consumes the small surface below, which mirrors what WhatsApp Web automation
libraries expose: an event emitter (`on`) plus a handful of async calls.

Events emitted by a client:
    qr(code), ready(), authenticated(), auth_failure(reason),
    disconnected(reason), message(msg)

Listeners registered through `on` may return an awaitable; clients should
await it (or schedule it) before emitting the next event.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from whatsapp_mcp.client.errors import ClientFactoryError

logger = logging.getLogger(__name__)

CLIENT_EVENTS = ("qr", "ready", "authenticated", "auth_failure", "disconnected", "message")


@runtime_checkable
class MediaPayload(Protocol):
    """Downloaded attachment: base64 `data` plus its mimetype."""

    mimetype: str
    data: str
    filename: str | None


@runtime_checkable
class MessageHandle(Protocol):
    async def download_media(self) -> MediaPayload | None: ...


@runtime_checkable
class ChatHandle(Protocol):
    async def fetch_messages(self, limit: int) -> list[Any]: ...


@runtime_checkable
class WhatsAppClientProtocol(Protocol):
    """Black-box WhatsApp Web client."""

    def on(self, event: str, listener: Callable[..., Any]) -> None: ...

    async def initialize(self) -> None: ...

    async def send_message(self, to: str, body: str) -> Any: ...

    async def get_contacts(self) -> list[Any]: ...

    async def get_chats(self) -> list[Any]: ...

    async def get_chat_by_id(self, chat_id: str) -> ChatHandle: ...

    async def logout(self) -> None: ...

    async def destroy(self) -> None: ...


ClientFactory = Callable[[], WhatsAppClientProtocol]


def load_client_factory(path: str) -> Callable[..., WhatsAppClientProtocol]:
    """Resolve a `"package.module:callable"` path to a client factory.

    Args:
        path: Import path of a callable returning a WhatsAppClientProtocol

    Returns:
        The resolved callable

    Raises:
        ClientFactoryError: If the path is malformed or cannot be imported
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        msg = f"Client factory must look like 'package.module:callable', got '{path}'"
        raise ClientFactoryError(msg, details={"path": path})

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        msg = f"Cannot import client factory module '{module_name}': {e}"
        raise ClientFactoryError(msg, details={"path": path}) from e

    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        msg = f"'{attr}' in module '{module_name}' is not a callable client factory"
        raise ClientFactoryError(msg, details={"path": path})

    logger.info("Loaded WhatsApp client factory %s", path)
    return factory


__all__ = [
    "CLIENT_EVENTS",
    "ChatHandle",
    "ClientFactory",
    "MediaPayload",
    "MessageHandle",
    "WhatsAppClientProtocol",
    "load_client_factory",
]
