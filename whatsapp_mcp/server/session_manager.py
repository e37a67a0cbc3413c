"""Multi-session manager for the streamable HTTP transport.

Maps opaque session tokens (the `Mcp-Session-Id` header) to transport
handles and routes every `/mcp` request to the right one:

- POST without a token: accepted only for a JSON-RPC `initialize` request,
  which creates a session (fresh uuid4 token, its own event store, a server
  task bound to the transport)
- POST/GET/DELETE with a known token: routed unchanged to its transport
  (GET honours `Last-Event-ID` through the session's event store)
- Unknown or missing token otherwise: HTTP 400, JSON-RPC code -32000
- Any failure before a response has started: HTTP 500, code -32603

Registry mutations happen under an `anyio.Lock`; request handling runs
outside it so different sessions proceed in parallel. When a session's
server task ends (transport closed) its registry entry is removed.

Usage (inside the Starlette lifespan):
    manager = SessionTransportManager(server)
    async with manager.run():
        yield
"""

import contextlib
import json
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import (
    LAST_EVENT_ID_HEADER,
    MCP_SESSION_ID_HEADER,
    EventStore,
    StreamableHTTPServerTransport,
)
from mcp.types import INTERNAL_ERROR, JSONRPCRequest
from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import Message, Receive, Scope, Send

from whatsapp_mcp.server.event_store import InMemoryEventStore

logger = logging.getLogger(__name__)

BAD_REQUEST_CODE = -32000
BAD_REQUEST_MESSAGE = (
    "Bad Request: No valid session ID provided or not an initialization request"
)

EventStoreFactory = Callable[[str], EventStore]
TransportFactory = Callable[[str, EventStore], Any]


@dataclass
class Session:
    """A live streamable-HTTP session.

    Attributes:
        session_id: Opaque token returned in Mcp-Session-Id
        transport: Transport handle, exclusively owned by the manager
        event_store: Per-session resumable event history
        created_at: Creation time
        cancel_scope: Scope of the session's server task
    """

    session_id: str
    transport: Any
    event_store: EventStore
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cancel_scope: anyio.CancelScope | None = None


def jsonrpc_error_response(status_code: int, code: int, message: str) -> JSONResponse:
    """JSON-RPC error body with a null id."""
    return JSONResponse(
        {"jsonrpc": "2.0", "error": {"code": code, "message": message}, "id": None},
        status_code=status_code,
    )


def is_initialize_request(payload: Any) -> bool:
    """True if payload is a single JSON-RPC `initialize` request."""
    if not isinstance(payload, dict):
        return False
    try:
        request = JSONRPCRequest.model_validate(payload)
    except ValidationError:
        return False
    return request.method == "initialize"


class SessionTransportManager:
    """Owns the session registry and routes `/mcp` requests.

    The instance itself is an ASGI app, mounted at `/mcp`.
    """

    def __init__(
        self,
        server: Server,
        *,
        json_response: bool = False,
        max_events_per_session: int = 1000,
        event_store_factory: EventStoreFactory | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            server: Low-level MCP server run once per session
            json_response: Answer POSTs with JSON instead of SSE streams
            max_events_per_session: Replay history kept per session (0 = unbounded)
            event_store_factory: Builds a session's event store from its id
            transport_factory: Builds a session's transport from (id, event store)
        """
        self.server = server
        self.json_response = json_response
        self._event_store_factory = event_store_factory or (
            lambda session_id: InMemoryEventStore(session_id, max_events_per_session)
        )
        self._transport_factory = transport_factory or self._default_transport
        self._sessions: dict[str, Session] = {}
        self._lock = anyio.Lock()
        self._task_group: TaskGroup | None = None

    def _default_transport(self, session_id: str, event_store: EventStore) -> StreamableHTTPServerTransport:
        return StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=self.json_response,
            event_store=event_store,
        )

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    async def _forget(self, session_id: str) -> Session | None:
        # Runs from finally blocks of cancelled tasks too
        with anyio.CancelScope(shield=True):
            async with self._lock:
                return self._sessions.pop(session_id, None)

    async def close_session(self, session_id: str) -> bool:
        """Terminate a session and remove it from the registry.

        Teardown faults are logged; the entry is removed regardless.

        Returns:
            True if the session existed
        """
        session = await self._forget(session_id)
        if session is None:
            return False

        try:
            with anyio.CancelScope(shield=True):
                await session.transport.terminate()
        except Exception as e:
            logger.warning(
                "Error terminating session %s: %s", session_id, e, extra={"session_id": session_id}
            )

        if session.cancel_scope is not None:
            session.cancel_scope.cancel()

        logger.info("Session closed: %s", session_id, extra={"session_id": session_id})
        return True

    async def close_all(self) -> None:
        """Close every session (failures logged per session) and clear the registry."""
        async with self._lock:
            session_ids = list(self._sessions)

        for session_id in session_ids:
            try:
                await self.close_session(session_id)
            except Exception as e:
                logger.exception("Failed to close session %s: %s", session_id, e)

        async with self._lock:
            self._sessions.clear()

        if session_ids:
            logger.info("Closed %s HTTP sessions", len(session_ids))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """Run the manager's task group; use from the Starlette lifespan."""
        if self._task_group is not None:
            msg = "Session manager is already running"
            raise RuntimeError(msg)

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            logger.info("HTTP session manager started")
            try:
                yield
            finally:
                logger.info("HTTP session manager shutting down")
                with anyio.CancelScope(shield=True):
                    await self.close_all()
                tg.cancel_scope.cancel()
                self._task_group = None

    async def _run_session(
        self,
        session: Session,
        *,
        task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        session_id = session.session_id
        with anyio.CancelScope() as scope:
            session.cancel_scope = scope
            try:
                async with session.transport.connect() as (read_stream, write_stream):
                    task_status.started()
                    await self.server.run(
                        read_stream,
                        write_stream,
                        self.server.create_initialization_options(),
                        stateless=False,
                    )
            except Exception:
                logger.exception("Session %s crashed", session_id, extra={"session_id": session_id})
            finally:
                if await self._forget(session_id) is not None:
                    logger.info(
                        "Session transport closed: %s", session_id, extra={"session_id": session_id}
                    )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.handle_request(scope, receive, send)

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Route one `/mcp` request; unhandled failures become HTTP 500 / -32603."""
        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self._route(scope, receive, tracking_send)
        except Exception as e:
            logger.exception("Error handling MCP request: %s", e)
            if not response_started:
                response = jsonrpc_error_response(500, INTERNAL_ERROR, "Internal server error")
                await response(scope, receive, send)

    async def _route(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self._task_group is None:
            msg = "Session manager is not running"
            raise RuntimeError(msg)

        request = Request(scope, receive)
        method = request.method
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        session = self._sessions.get(session_id) if session_id else None

        if method == "POST":
            if session is not None:
                await session.transport.handle_request(scope, receive, send)
                return
            if session_id:
                logger.warning("POST for unknown session %s", session_id)
                await self._bad_request(scope, receive, send)
                return
            await self._handle_initialization(request, scope, receive, send)
            return

        if method in ("GET", "DELETE"):
            if session is None:
                logger.warning("%s with missing or unknown session id", method)
                await self._bad_request(scope, receive, send)
                return

            if method == "GET":
                last_event_id = request.headers.get(LAST_EVENT_ID_HEADER)
                if last_event_id:
                    logger.info(
                        "Client reconnecting with Last-Event-ID: %s",
                        last_event_id,
                        extra={"session_id": session_id},
                    )
                await session.transport.handle_request(scope, receive, send)
                return

            try:
                await session.transport.handle_request(scope, receive, send)
            finally:
                await self.close_session(session.session_id)
            return

        response = JSONResponse({"detail": "Method Not Allowed"}, status_code=405)
        response.headers["Allow"] = "GET, POST, DELETE"
        await response(scope, receive, send)

    async def _bad_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = jsonrpc_error_response(400, BAD_REQUEST_CODE, BAD_REQUEST_MESSAGE)
        await response(scope, receive, send)

    async def _handle_initialization(
        self, request: Request, scope: Scope, receive: Receive, send: Send
    ) -> None:
        body = await request.body()
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            payload = None

        if not is_initialize_request(payload):
            logger.warning("POST without session id is not an initialize request")
            await self._bad_request(scope, receive, send)
            return

        session_id = uuid4().hex
        event_store = self._event_store_factory(session_id)
        session = Session(
            session_id=session_id,
            transport=self._transport_factory(session_id, event_store),
            event_store=event_store,
        )
        async with self._lock:
            self._sessions[session_id] = session
        logger.info("Session initialized: %s", session_id, extra={"session_id": session_id})

        body_sent = False

        async def replay_receive() -> Message:
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        status: int | None = None

        async def watch_status(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        established = False
        try:
            await self._task_group.start(self._run_session, session)
            await session.transport.handle_request(scope, replay_receive, watch_status)
            established = status is not None and status < 400
        finally:
            if not established:
                logger.warning(
                    "Initialization of session %s did not succeed, discarding it",
                    session_id,
                    extra={"session_id": session_id},
                )
                await self.close_session(session_id)


__all__ = [
    "BAD_REQUEST_CODE",
    "BAD_REQUEST_MESSAGE",
    "Session",
    "SessionTransportManager",
    "is_initialize_request",
    "jsonrpc_error_response",
]
