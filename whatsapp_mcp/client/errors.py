"""Error types raised by the WhatsApp connection layer.

Every precondition failure of the connection state machine is a subclass of
`WhatsAppClientError`, so callers (the command facade) can catch one base
class and embed the message in a tool result.

Example:
    # Precondition error
    raise NotReadyError("WhatsApp client is not ready")

    # Lifecycle error
    raise AlreadyDestroyedError("Client is destroyed - cannot reconnect")
"""

from typing import Any


class WhatsAppClientError(Exception):
    """Base class for all connection-layer errors.

    Attributes:
        message: Error message
        details: Additional error context
        error_type: Error type string (defaults to class name)
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.error_type = error_type or self.__class__.__name__


class NotReadyError(WhatsAppClientError):
    """Raised when an operation needs a ready (paired and synced) session."""


class NotConnectedError(WhatsAppClientError):
    """Raised when disconnecting a session that is neither connected nor ready."""


class AlreadyDestroyedError(WhatsAppClientError):
    """Raised when a lifecycle call reaches a destroyed state machine."""


class InvalidTransitionError(WhatsAppClientError):
    """Raised when a lifecycle call is not valid from the current phase."""


class InitializationTimeoutError(WhatsAppClientError):
    """Raised when client initialization exceeds the configured time box."""


class ClientFactoryError(WhatsAppClientError):
    """Raised when the configured client factory cannot be loaded."""


__all__ = [
    "AlreadyDestroyedError",
    "ClientFactoryError",
    "InitializationTimeoutError",
    "InvalidTransitionError",
    "NotConnectedError",
    "NotReadyError",
    "WhatsAppClientError",
]
