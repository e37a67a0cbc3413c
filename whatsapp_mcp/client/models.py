"""Data model for the WhatsApp connection layer.

`ConnectionState` is the single mutable record owned by the connection state
machine; readers only ever receive copies. The remaining dataclasses are the
normalized shapes of collaborator objects (contacts, chats, messages) so the
tool layer never depends on the client library's own attribute layout.
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

GROUP_SUFFIX = "@g.us"


class ConnectionPhase(Enum):
    """Lifecycle phases of the connection state machine."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    AWAITING_PAIRING = "awaiting_pairing"
    READY = "ready"
    DESTROYED = "destroyed"


@dataclass
class ConnectionState:
    """Connection flags and pairing material.

    Attributes:
        connected: Underlying transport to WhatsApp Web is open
        ready: Session is paired and synced, operations may run
        authenticated: Session credentials were accepted
        pairing_code: Raw QR payload, only while awaiting pairing
        pairing_image: PNG data URL rendered from pairing_code
        last_seen: Last time the session was seen alive
    """

    connected: bool = False
    ready: bool = False
    authenticated: bool = False
    pairing_code: str | None = None
    pairing_image: str | None = None
    last_seen: datetime | None = None

    def copy(self) -> "ConnectionState":
        return replace(self)

    def clear_pairing(self) -> None:
        self.pairing_code = None
        self.pairing_image = None

    def reset(self) -> None:
        """Reset every flag in place (reconnect / disconnect)."""
        self.connected = False
        self.ready = False
        self.authenticated = False
        self.clear_pairing()

    @property
    def qr_available(self) -> bool:
        return self.pairing_code is not None

    def to_dict(self) -> dict[str, Any]:
        """Wire representation (camelCase keys, ISO timestamps)."""
        return {
            "isConnected": self.connected,
            "isReady": self.ready,
            "isAuthenticated": self.authenticated,
            "qrCode": self.pairing_code,
            "qrCodeDataURL": self.pairing_image,
            "lastSeen": self.last_seen.isoformat() if self.last_seen else None,
        }


def read_field(raw: Any, name: str, default: Any = None) -> Any:
    """Read a field from a mapping or an attribute-bearing object."""
    if isinstance(raw, Mapping):
        return raw.get(name, default)
    return getattr(raw, name, default)


def serialize_id(value: Any) -> str:
    """Collapse a collaborator id (plain string or `{_serialized: ...}`) to a string."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    serialized = read_field(value, "_serialized") or read_field(value, "serialized")
    return str(serialized) if serialized is not None else str(value)


@dataclass(frozen=True)
class Contact:
    id: str
    name: str | None = None
    pushname: str | None = None
    is_group: bool = False
    is_my_contact: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> "Contact":
        return cls(
            id=serialize_id(read_field(raw, "id")),
            name=read_field(raw, "name"),
            pushname=read_field(raw, "pushname"),
            is_group=bool(read_field(raw, "is_group", read_field(raw, "isGroup", False))),
            is_my_contact=bool(read_field(raw, "is_my_contact", read_field(raw, "isMyContact", False))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "pushname": self.pushname,
            "isGroup": self.is_group,
            "isMyContact": self.is_my_contact,
        }


@dataclass(frozen=True)
class Chat:
    id: str
    name: str | None = None
    is_group: bool = False
    unread_count: int = 0
    last_message: str | None = None

    @classmethod
    def from_raw(cls, raw: Any) -> "Chat":
        last_message = read_field(raw, "last_message", read_field(raw, "lastMessage"))
        if last_message is not None and not isinstance(last_message, str):
            last_message = read_field(last_message, "body")
        return cls(
            id=serialize_id(read_field(raw, "id")),
            name=read_field(raw, "name"),
            is_group=bool(read_field(raw, "is_group", read_field(raw, "isGroup", False))),
            unread_count=int(read_field(raw, "unread_count", read_field(raw, "unreadCount", 0)) or 0),
            last_message=last_message,
        )

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on display name and id."""
        needle = query.lower()
        return needle in (self.name or "").lower() or needle in self.id.lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "isGroup": self.is_group,
            "unreadCount": self.unread_count,
            "lastMessage": self.last_message,
        }


@dataclass(frozen=True)
class MediaData:
    mimetype: str
    filename: str | None
    size: int


@dataclass(frozen=True)
class Message:
    """A normalized chat message.

    `media_url` / `media_data` stay empty unless media was requested and the
    download succeeded.
    """

    id: str
    sender: str
    recipient: str
    body: str
    timestamp: int
    has_media: bool = False
    media_type: str | None = None
    author: str | None = None
    is_forwarded: bool = False
    mentioned_ids: tuple[str, ...] = field(default_factory=tuple)
    media_url: str | None = None
    media_data: MediaData | None = None

    @property
    def is_group_msg(self) -> bool:
        return GROUP_SUFFIX in self.sender

    @property
    def group_id(self) -> str | None:
        return self.sender if self.is_group_msg else None

    @classmethod
    def from_raw(cls, raw: Any) -> "Message":
        sender = read_field(raw, "from_", None) or read_field(raw, "from", "") or ""
        return cls(
            id=serialize_id(read_field(raw, "id")),
            sender=sender,
            recipient=read_field(raw, "to", "") or "",
            body=read_field(raw, "body", "") or "",
            timestamp=int(read_field(raw, "timestamp", 0) or 0),
            has_media=bool(read_field(raw, "has_media", read_field(raw, "hasMedia", False))),
            media_type=read_field(raw, "type"),
            author=read_field(raw, "author") or sender,
            is_forwarded=bool(read_field(raw, "is_forwarded", read_field(raw, "isForwarded", False))),
            mentioned_ids=tuple(
                serialize_id(m)
                for m in (read_field(raw, "mentioned_ids", read_field(raw, "mentionedIds")) or [])
            ),
        )

    def with_media(self, media_url: str, media_data: MediaData) -> "Message":
        return replace(self, media_url=media_url, media_data=media_data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from": self.sender,
            "body": self.body,
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            "isGroupMsg": self.is_group_msg,
            "hasMedia": self.has_media,
            "mediaType": self.media_type,
            "mediaUrl": self.media_url,
            "mediaData": asdict(self.media_data) if self.media_data else None,
            "author": self.author,
            "isForwarded": self.is_forwarded,
        }


__all__ = [
    "Chat",
    "ConnectionPhase",
    "ConnectionState",
    "Contact",
    "MediaData",
    "Message",
    "read_field",
    "serialize_id",
]
