"""WhatsApp connection layer.

This package owns everything that talks to the WhatsApp Web collaborator:
- state_machine.py: connection/authentication state machine
- models.py: ConnectionState and normalized contacts, chats, messages
- protocol.py: the collaborator client protocol and factory loading
- pairing.py: QR pairing code rendering
- errors.py: precondition and lifecycle errors
"""

from whatsapp_mcp.client.errors import (
    AlreadyDestroyedError,
    ClientFactoryError,
    InitializationTimeoutError,
    InvalidTransitionError,
    NotConnectedError,
    NotReadyError,
    WhatsAppClientError,
)
from whatsapp_mcp.client.models import (
    Chat,
    ConnectionPhase,
    ConnectionState,
    Contact,
    MediaData,
    Message,
)
from whatsapp_mcp.client.protocol import ClientFactory, WhatsAppClientProtocol, load_client_factory
from whatsapp_mcp.client.state_machine import (
    MANUAL_DISCONNECT_REASON,
    ConnectionStateMachine,
    PendingReconnect,
)

__all__ = [
    "MANUAL_DISCONNECT_REASON",
    "AlreadyDestroyedError",
    "Chat",
    "ClientFactory",
    "ClientFactoryError",
    "ConnectionPhase",
    "ConnectionState",
    "ConnectionStateMachine",
    "Contact",
    "InitializationTimeoutError",
    "InvalidTransitionError",
    "MediaData",
    "Message",
    "NotConnectedError",
    "NotReadyError",
    "PendingReconnect",
    "WhatsAppClientError",
    "WhatsAppClientProtocol",
    "load_client_factory",
]
