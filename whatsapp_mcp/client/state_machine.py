"""Connection state machine for a WhatsApp Web session.

This module owns the single authoritative `ConnectionState` and the one
replaceable handle to the collaborator client. It provides:
- **Event transitions**: qr, ready, authenticated, auth_failure, disconnected,
  message (collaborator events are consumed here only)
- **Lifecycle calls**: initialize, reconnect, disconnect, logout, destroy
- **Auto-reconnect**: one pending retry at a time, superseded on reschedule
- **Re-published events**: a closed set listeners can subscribe to with `on()`

Phases:
- **IDLE**: no live session (start, after a disconnect)
- **INITIALIZING**: collaborator client is starting
- **AWAITING_PAIRING**: a QR pairing code is waiting to be scanned
- **READY**: paired and synced, operations may run
- **DESTROYED**: terminal, suppresses auto-reconnect until re-initialized

Concurrency:
    Flag updates are applied under `_state_lock` so readers never observe a
    partial transition. Lifecycle calls are serialized under `_lifecycle_lock`
    because the collaborator's teardown/construction is not reentrant.
    `reconnect()` is single-flight: concurrent callers join the attempt that
    is already running. Events from a client that has since been replaced are
    dropped.

Typical usage:
    machine = ConnectionStateMachine(client_factory, init_timeout=60.0)
    machine.on("ready", on_ready)
    await machine.initialize()
    ...
    await machine.destroy()
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from whatsapp_mcp.client.errors import (
    AlreadyDestroyedError,
    InitializationTimeoutError,
    InvalidTransitionError,
    NotConnectedError,
    NotReadyError,
)
from whatsapp_mcp.client.models import ConnectionPhase, ConnectionState, Message
from whatsapp_mcp.client.pairing import print_pairing_code, render_pairing_image
from whatsapp_mcp.client.protocol import CLIENT_EVENTS, ClientFactory, WhatsAppClientProtocol

logger = logging.getLogger(__name__)

MANUAL_DISCONNECT_REASON = "Manual disconnect"
DEFAULT_RECONNECT_DELAY_SECONDS = 3.0
DEFAULT_RETRY_BACKOFF_SECONDS = 10.0

PUBLISHED_EVENTS = frozenset(
    {
        "qr",
        "ready",
        "authenticated",
        "auth_failure",
        "disconnected",
        "logout",
        "reconnected",
        "message",
        "initialization_timeout",
    }
)


@dataclass
class PendingReconnect:
    """A scheduled reconnection attempt.

    Attributes:
        reason: Why the attempt was scheduled
        deadline: Event-loop time at which the attempt fires
        handle: Timer handle, cancelled when superseded
    """

    reason: str
    deadline: float
    handle: asyncio.TimerHandle

    def cancel(self) -> None:
        self.handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self.handle.cancelled()


class ConnectionStateMachine:
    """Owns the WhatsApp session lifecycle and its connection state."""

    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SECONDS,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS,
        init_timeout: float | None = None,
        pairing_renderer: Callable[[str], str] = render_pairing_image,
        print_pairing: bool = False,
    ) -> None:
        """Initialize the state machine.

        Args:
            client_factory: Zero-argument callable building a fresh collaborator client
            reconnect_delay: Delay before the auto-reconnect after a manual disconnect
            retry_backoff: Delay before retrying a failed reconnection
            init_timeout: Time box for client initialization (None = unbounded)
            pairing_renderer: Turns a pairing code into an image data URL
            print_pairing: Also print pairing codes to the terminal (stderr)
        """
        self._client_factory = client_factory
        self._reconnect_delay = reconnect_delay
        self._retry_backoff = retry_backoff
        self._init_timeout = init_timeout
        self._pairing_renderer = pairing_renderer
        self._print_pairing = print_pairing

        self._client: WhatsAppClientProtocol | None = None
        self._state = ConnectionState()
        self._phase = ConnectionPhase.IDLE
        self._destroyed = False

        self._state_lock = asyncio.Lock()
        self._lifecycle_lock = asyncio.Lock()
        self._reconnect_task: asyncio.Task | None = None
        self._pending: PendingReconnect | None = None
        self._background: set[asyncio.Task] = set()
        self._listeners: dict[str, list[Callable[..., Any]]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Copy of the current connection state."""
        return self._state.copy()

    @property
    def phase(self) -> ConnectionPhase:
        return self._phase

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def client(self) -> WhatsAppClientProtocol | None:
        return self._client

    @property
    def pending_reconnect(self) -> PendingReconnect | None:
        return self._pending

    def ready_client(self) -> WhatsAppClientProtocol:
        """Return the live client, or raise NotReadyError if the session is not ready."""
        if not self._state.ready or self._client is None:
            msg = "WhatsApp client is not ready"
            raise NotReadyError(msg, details={"phase": self._phase.value})
        return self._client

    # ------------------------------------------------------------------
    # Listener registry
    # ------------------------------------------------------------------

    def on(self, event: str, listener: Callable[..., Any]) -> None:
        """Subscribe to a re-published event."""
        if event not in PUBLISHED_EVENTS:
            msg = f"Unknown event '{event}'. Available events: {sorted(PUBLISHED_EVENTS)}"
            raise ValueError(msg)
        self._listeners[event].append(listener)

    async def _publish(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception("Listener for '%s' failed: %s", event, e)

    # ------------------------------------------------------------------
    # Collaborator event transitions
    # ------------------------------------------------------------------

    def _set_phase(self, phase: ConnectionPhase) -> None:
        # DESTROYED only leaves through initialize()
        if self._destroyed and phase is not ConnectionPhase.DESTROYED:
            return
        self._phase = phase

    def _attach_handlers(self, client: WhatsAppClientProtocol) -> None:
        handlers = {
            "qr": self.handle_qr,
            "ready": self.handle_ready,
            "authenticated": self.handle_authenticated,
            "auth_failure": self.handle_auth_failure,
            "disconnected": self.handle_disconnected,
            "message": self.handle_message,
        }
        for event in CLIENT_EVENTS:
            client.on(event, self._bind(client, handlers[event]))

    def _bind(
        self,
        client: WhatsAppClientProtocol,
        handler: Callable[..., Coroutine[Any, Any, None]],
    ) -> Callable[..., asyncio.Task | None]:
        def listener(*args: Any) -> asyncio.Task | None:
            if client is not self._client:
                logger.debug("Ignoring %s from a replaced client", handler.__name__)
                return None
            return self._spawn(handler(*args))

        return listener

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def handle_qr(self, code: str) -> None:
        logger.info("QR code received, scan it with your phone")

        image: str | None = None
        try:
            image = self._pairing_renderer(code)
        except Exception as e:
            logger.exception("Failed to render pairing code, keeping raw code: %s", e)

        if self._print_pairing:
            try:
                print_pairing_code(code)
            except Exception as e:
                logger.warning("Failed to print pairing code: %s", e)

        async with self._state_lock:
            self._set_phase(ConnectionPhase.AWAITING_PAIRING)
            self._state.pairing_code = code
            self._state.pairing_image = image
            self._state.authenticated = False
            self._state.ready = False

        await self._publish("qr", code, image)

    async def handle_ready(self) -> None:
        logger.info("WhatsApp client is ready")
        async with self._state_lock:
            self._set_phase(ConnectionPhase.READY)
            self._state.clear_pairing()
            self._state.ready = True
            self._state.authenticated = True
            self._state.last_seen = datetime.now(timezone.utc)
        await self._publish("ready")

    async def handle_authenticated(self) -> None:
        logger.info("WhatsApp client authenticated")
        async with self._state_lock:
            self._state.authenticated = True
            self._state.clear_pairing()
        await self._publish("authenticated")

    async def handle_auth_failure(self, reason: str) -> None:
        logger.error("Authentication failed: %s", reason)
        async with self._state_lock:
            self._state.authenticated = False
            self._state.ready = False
            if self._phase is ConnectionPhase.READY:
                self._set_phase(ConnectionPhase.INITIALIZING)
        await self._publish("auth_failure", reason)

    async def handle_disconnected(self, reason: str) -> None:
        logger.warning("WhatsApp client disconnected: %s", reason)
        async with self._state_lock:
            self._state.connected = False
            self._state.ready = False
            self._set_phase(ConnectionPhase.IDLE)
            auto_reconnect = reason == MANUAL_DISCONNECT_REASON and not self._destroyed

        await self._publish("disconnected", reason)

        if auto_reconnect:
            logger.info("Scheduling auto-reconnection in %s seconds...", self._reconnect_delay)
            self._schedule_reconnect(self._reconnect_delay, reason)

    async def handle_message(self, raw: Any) -> None:
        try:
            message = Message.from_raw(raw)
        except Exception as e:
            logger.warning("Dropping malformed message event: %s", e)
            return

        async with self._state_lock:
            self._state.last_seen = datetime.now(timezone.utc)
        await self._publish("message", message)

    # ------------------------------------------------------------------
    # Reconnect scheduling
    # ------------------------------------------------------------------

    def _schedule_reconnect(self, delay: float, reason: str) -> None:
        loop = asyncio.get_running_loop()
        self._cancel_pending_reconnect()
        handle = loop.call_later(delay, self._fire_pending_reconnect)
        self._pending = PendingReconnect(reason=reason, deadline=loop.time() + delay, handle=handle)

    def _cancel_pending_reconnect(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _fire_pending_reconnect(self) -> None:
        self._pending = None
        if self._destroyed:
            return
        self._spawn(self._run_scheduled_reconnect())

    async def _run_scheduled_reconnect(self) -> None:
        try:
            await self.reconnect()
        except AlreadyDestroyedError:
            logger.info("Skipping scheduled reconnection: client was destroyed")
        except Exception as e:
            # reconnect() already scheduled the next retry
            logger.error("Scheduled reconnection failed: %s", e)

    # ------------------------------------------------------------------
    # Lifecycle calls
    # ------------------------------------------------------------------

    async def _start_client(self, timeout: float | None) -> None:
        """Build (if needed) and initialize the client. Caller holds _lifecycle_lock."""
        if self._client is None:
            client = self._client_factory()
            self._attach_handlers(client)
            self._client = client
        client = self._client

        async with self._state_lock:
            self._set_phase(ConnectionPhase.INITIALIZING)

        logger.info("Initializing WhatsApp client...")
        try:
            if timeout is not None:
                await asyncio.wait_for(client.initialize(), timeout=timeout)
            else:
                await client.initialize()
        except asyncio.TimeoutError:
            logger.error("WhatsApp client initialization timed out after %ss", timeout)
            # late events from the abandoned client must not touch the state
            await self._teardown_client()
            async with self._state_lock:
                self._state.reset()
            await self._revert_initializing()
            await self._publish("initialization_timeout", timeout)
            msg = f"WhatsApp client initialization timed out after {timeout}s"
            raise InitializationTimeoutError(msg, details={"timeout_s": timeout}) from None
        except Exception as e:
            logger.error("Failed to initialize WhatsApp client: %s", e)
            await self._revert_initializing()
            raise

        async with self._state_lock:
            if client is self._client:
                self._state.connected = True

    async def _revert_initializing(self) -> None:
        async with self._state_lock:
            if self._phase is ConnectionPhase.INITIALIZING:
                self._set_phase(ConnectionPhase.IDLE)

    async def _teardown_client(self) -> None:
        """Drop the current client handle and destroy it (best effort)."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.destroy()
        except Exception as e:
            logger.warning("Error tearing down WhatsApp client: %s", e)

    async def initialize(self, timeout: float | None = None) -> None:
        """Start the collaborator client.

        Valid from IDLE or after destroy(). `connected` is set once the
        client's initialize() returns; pairing events may arrive before that.

        Args:
            timeout: Time box in seconds (defaults to the configured init_timeout)

        Raises:
            InvalidTransitionError: If the session is already starting or live
            InitializationTimeoutError: If initialization exceeds the time box
        """
        async with self._lifecycle_lock:
            if self._phase not in (ConnectionPhase.IDLE, ConnectionPhase.DESTROYED):
                msg = f"Cannot initialize from phase '{self._phase.value}'"
                raise InvalidTransitionError(msg, details={"phase": self._phase.value})

            if self._destroyed:
                logger.info("Re-initializing a destroyed WhatsApp client")
                async with self._state_lock:
                    self._destroyed = False
                    self._state.reset()
                    self._set_phase(ConnectionPhase.IDLE)

            await self._start_client(timeout if timeout is not None else self._init_timeout)

    async def reconnect(self) -> None:
        """Replace the client with a fresh instance and initialize it.

        Raises:
            AlreadyDestroyedError: If destroy() was called
            Exception: Whatever the failed attempt raised (a retry is scheduled)
        """
        if self._destroyed:
            msg = "Client is destroyed - cannot reconnect"
            raise AlreadyDestroyedError(msg)

        task = self._reconnect_task
        if task is None or task.done():
            task = asyncio.create_task(self._reconnect_once())
            task.add_done_callback(_consume_exception)
            self._reconnect_task = task
        else:
            logger.info("Reconnection already in progress, joining it")

        await asyncio.shield(task)

    async def _reconnect_once(self) -> None:
        async with self._lifecycle_lock:
            if self._destroyed:
                msg = "Client is destroyed - cannot reconnect"
                raise AlreadyDestroyedError(msg)

            logger.info("Attempting to reconnect WhatsApp client...")
            self._cancel_pending_reconnect()
            await self._teardown_client()

            async with self._state_lock:
                self._state.reset()
                self._set_phase(ConnectionPhase.IDLE)

            try:
                await self._start_client(self._init_timeout)
            except InitializationTimeoutError:
                raise
            except Exception as e:
                logger.exception("Failed to reconnect WhatsApp client: %s", e)
                if not self._destroyed:
                    logger.info("Retrying reconnection in %s seconds...", self._retry_backoff)
                    self._schedule_reconnect(self._retry_backoff, "retry after failed reconnect")
                raise

        logger.info("WhatsApp client reconnected successfully")
        await self._publish("reconnected")

    async def disconnect(self) -> None:
        """Log out (best effort), tear the client down and reset all state.

        Emits `disconnected` with the manual-disconnect reason, which schedules
        the auto-reconnect.

        Raises:
            NotConnectedError: If the session is neither connected nor ready
        """
        logged_out = False
        async with self._lifecycle_lock:
            if not (self._state.connected or self._state.ready):
                msg = "Client is not connected - nothing to disconnect"
                raise NotConnectedError(msg)

            logger.info("Disconnecting WhatsApp client...")
            client = self._client
            if self._state.authenticated and client is not None:
                try:
                    await client.logout()
                    logged_out = True
                except Exception as e:
                    logger.warning("Logout before disconnect failed, continuing: %s", e)

            await self._teardown_client()

            async with self._state_lock:
                self._state.reset()
                self._set_phase(ConnectionPhase.IDLE)

        logger.info("WhatsApp client disconnected successfully")
        if logged_out:
            await self._publish("logout")
        await self.handle_disconnected(MANUAL_DISCONNECT_REASON)

    async def logout(self) -> None:
        """Log out of WhatsApp while keeping the connection open.

        Raises:
            NotReadyError: If the session is not ready
        """
        async with self._lifecycle_lock:
            client = self._client
            if not self._state.ready or client is None:
                msg = "Client is not ready - cannot logout"
                raise NotReadyError(msg)

            logger.info("Logging out of WhatsApp...")
            await client.logout()

            async with self._state_lock:
                self._state.authenticated = False
                self._state.ready = False
                self._state.clear_pairing()
                self._set_phase(ConnectionPhase.INITIALIZING)

        logger.info("Successfully logged out of WhatsApp")
        await self._publish("logout")

    async def destroy(self) -> None:
        """Tear everything down and suppress auto-reconnect. Idempotent."""
        self._cancel_pending_reconnect()
        async with self._state_lock:
            already_destroyed = self._destroyed
            self._destroyed = True
            self._set_phase(ConnectionPhase.DESTROYED)

        async with self._lifecycle_lock:
            self._cancel_pending_reconnect()
            await self._teardown_client()
            async with self._state_lock:
                self._state.connected = False
                self._state.ready = False

        if not already_destroyed:
            logger.info("WhatsApp client destroyed")


def _consume_exception(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


__all__ = [
    "DEFAULT_RECONNECT_DELAY_SECONDS",
    "DEFAULT_RETRY_BACKOFF_SECONDS",
    "MANUAL_DISCONNECT_REASON",
    "PUBLISHED_EVENTS",
    "ConnectionStateMachine",
    "PendingReconnect",
]
