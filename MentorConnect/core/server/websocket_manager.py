"""
Websocket server for the MentorConnect relay.

Composes the realtime core and exposes it over websockets:

    ┌───────────────────────────────────────────────────────┐
    │                      RelayServer                      │
    │  ┌──────────────┐  ┌──────────────┐  ┌─────────────┐  │
    │  │ Lifecycle    │─▶│ Presence     │◀─│ Message     │  │
    │  │ Manager      │  │ Registry     │  │ Relay       │  │
    │  └──────┬───────┘  └──────────────┘  └──────┬──────┘  │
    │         │        ┌───────────────┐          │         │
    │         └───────▶│ WebSocket     │◀─────────┘         │
    │                  │ Transport     │                    │
    │                  └───────────────┘                    │
    └───────────────────────────────────────────────────────┘

Connection flow:
    1. open -> ``connectionOpened`` sent, connection UNIDENTIFIED
    2. handshake token (``?token=`` / ``authToken`` cookie) or an
       ``identify`` event -> IDENTIFIED, ``presenceChanged`` broadcast
    3. ``sendMessage`` / ``fetchHistory`` / ``ping`` handled in order
    4. close for any reason -> CLOSED, ``presenceChanged`` broadcast

Errors in a request are answered with ``messageRejected`` on the
originating connection only; the connection stays open.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from MentorConnect.config import config
from MentorConnect.core.message.protocol import Envelope, EventType, FrameError
from MentorConnect.core.server.auth import JWTAuthenticator
from MentorConnect.core.server.errors import PersistenceError, RelayError, ValidationError
from MentorConnect.core.server.interfaces import Authenticator, Persistence
from MentorConnect.core.server.presence import PresenceRegistry
from MentorConnect.core.server.routing import MessageRelay
from MentorConnect.core.server.session import ConnectionLifecycleManager
from MentorConnect.core.server.storage_sqlite import SQLitePersistence, SQLiteStore
from MentorConnect.core.server.transport import WebSocketTransport

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 200

Handler = Callable[[str, Dict[str, Any]], Awaitable[None]]


class RelayServer:
    """
    Websocket front end for presence and chat delivery.

    Example:
        server = RelayServer()
        async with server.run("localhost", 8765):
            await asyncio.Future()
    """

    def __init__(
        self,
        persistence: Optional[Persistence] = None,
        authenticator: Optional[Authenticator] = None,
        require_token: Optional[bool] = None
    ):
        """
        Initialize the server and its components.

        Args:
            persistence: Message / status store (SQLite at config.SQLITE_DB_FILE if None)
            authenticator: Token verifier (JWTAuthenticator if None)
            require_token: Reject identify events without a signed token
                (config.REQUIRE_TOKEN if None)
        """
        self._registry = PresenceRegistry()
        self._transport = WebSocketTransport()
        self._persistence = persistence or SQLitePersistence(SQLiteStore(config.SQLITE_DB_FILE))
        self._authenticator = authenticator or JWTAuthenticator()
        self._require_token = config.REQUIRE_TOKEN if require_token is None else require_token

        self._lifecycle = ConnectionLifecycleManager(self._registry, self._transport, self._persistence)
        self._relay = MessageRelay(self._registry, self._persistence, self._transport)

        self._handlers: Dict[EventType, Handler] = {
            EventType.IDENTIFY: self._on_identify,
            EventType.SEND_MESSAGE: self._on_send_message,
            EventType.FETCH_HISTORY: self._on_fetch_history,
            EventType.PING: self._on_ping,
        }

        self._server: Optional[Server] = None
        self._running = False

    @property
    def registry(self) -> PresenceRegistry:
        return self._registry

    @property
    def lifecycle(self) -> ConnectionLifecycleManager:
        return self._lifecycle

    @property
    def relay(self) -> MessageRelay:
        return self._relay

    @property
    def transport(self) -> WebSocketTransport:
        return self._transport

    @property
    def persistence(self) -> Persistence:
        return self._persistence

    @property
    def authenticator(self) -> Authenticator:
        return self._authenticator

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> Optional[int]:
        """Port actually bound (useful when started on port 0)."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    @asynccontextmanager
    async def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """
        Run the server as an async context manager.

        Yields:
            The server instance
        """
        await self.start(host, port)
        try:
            yield self
        finally:
            await self.stop()

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        host = host or config.DEFAULT_HOST
        port = config.DEFAULT_SERVER_PORT if port is None else port
        self._server = await serve(self._handle_connection, host, port)
        self._running = True
        logger.info("Relay server listening on ws://%s:%s", host, self.port)

    async def stop(self) -> None:
        self._running = False
        await self._transport.close_all()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
        # handlers normally close their own connections; catch stragglers
        await self._lifecycle.close_all()
        await self._lifecycle.drain()
        logger.info("Relay server stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        connection = self._lifecycle.open()
        connection_id = connection.connection_id
        self._transport.attach(connection_id, websocket)
        try:
            await self._transport.send(connection_id, EventType.CONNECTION_OPENED,
                                       {"connection_id": connection_id})
            await self._identify_from_handshake(connection_id, websocket)
            async for raw in websocket:
                await self._dispatch(connection_id, raw)
        except ConnectionClosed:
            logger.debug("Connection %s closed by peer", connection_id)
        except Exception:
            logger.exception("Error handling connection %s", connection_id)
        finally:
            self._transport.detach(connection_id)
            await self._lifecycle.close(connection_id)

    async def _identify_from_handshake(self, connection_id: str, websocket: ServerConnection) -> None:
        token = self._authenticator.extract_token(websocket)
        if not token:
            return
        try:
            user_id = await self._resolve_token(token)
            await self._identify(connection_id, user_id)
        except RelayError as e:
            await self._reject(connection_id, e)

    async def _dispatch(self, connection_id: str, raw: Any) -> None:
        try:
            envelope = Envelope.deserialize(raw)
        except FrameError as e:
            await self._reject(connection_id, ValidationError(str(e), code="BAD_FRAME"))
            return

        handler = self._handlers.get(envelope.event)
        if handler is None:
            await self._reject(connection_id, ValidationError(
                f"Event {envelope.event.value} cannot be sent by clients", code="UNSUPPORTED_EVENT"
            ))
            return

        try:
            await handler(connection_id, envelope.data)
        except PersistenceError as e:
            logger.error("Persistence failure on %s (%s): %s", connection_id, envelope.event.value, e)
            await self._reject(connection_id, e, envelope.data)
        except RelayError as e:
            logger.info("Rejected %s from %s: %s", envelope.event.value, connection_id, e)
            await self._reject(connection_id, e, envelope.data)
        except Exception:
            logger.exception("Unexpected error handling %s from %s", envelope.event.value, connection_id)
            await self._reject(connection_id, RelayError("Internal server error", code="INTERNAL_ERROR"),
                               envelope.data)

    async def _on_identify(self, connection_id: str, data: Dict[str, Any]) -> None:
        token = data.get("token")
        if token:
            user_id = await self._resolve_token(str(token))
        elif self._require_token:
            raise ValidationError("A signed token is required to identify", code="TOKEN_REQUIRED")
        else:
            user_id = data.get("user_id")
        await self._identify(connection_id, user_id)

    async def _on_send_message(self, connection_id: str, data: Dict[str, Any]) -> None:
        # the relay never pushes to the origin, so this is its only frame
        report = await self._relay.deliver(
            connection_id,
            data.get("receiver_id"),
            data.get("content"),
            data.get("type"),
        )
        payload: Dict[str, Any] = {"message": report.message.to_dict()}
        if data.get("client_id") is not None:
            payload["client_id"] = data["client_id"]
        await self._transport.send(connection_id, EventType.MESSAGE_SENT, payload)

    async def _on_fetch_history(self, connection_id: str, data: Dict[str, Any]) -> None:
        user_id = self._registry.user_for(connection_id)
        if user_id is None:
            raise ValidationError("Identify before fetching history", code="UNIDENTIFIED")
        try:
            limit = int(data.get("limit") or config.HISTORY_LIMIT)
        except (TypeError, ValueError):
            raise ValidationError("limit must be an integer", code="INVALID_LIMIT")
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        other_id = data.get("with")
        messages = await self._relay.history(user_id, other_id, limit)
        await self._transport.send(connection_id, EventType.HISTORY, {
            "with": other_id,
            "messages": [m.to_dict() for m in messages],
        })

    async def _on_ping(self, connection_id: str, data: Dict[str, Any]) -> None:
        await self._transport.send(connection_id, EventType.PONG, {})

    async def _identify(self, connection_id: str, user_id: Any) -> None:
        await self._lifecycle.identify(connection_id, user_id)
        await self._transport.send(connection_id, EventType.IDENTIFIED, {"user_id": user_id})

    async def _resolve_token(self, token: str) -> str:
        result = await self._authenticator.authenticate(token)
        if not result.success:
            raise ValidationError(result.error_message or "Authentication failed",
                                  code=result.error_code or "UNAUTHORIZED")
        return result.user_id

    async def _reject(
        self,
        connection_id: str,
        error: RelayError,
        request: Optional[Dict[str, Any]] = None
    ) -> None:
        payload = error.to_payload()
        if request and request.get("client_id") is not None:
            payload["client_id"] = request["client_id"]
        await self._transport.send(connection_id, EventType.MESSAGE_REJECTED, payload)

