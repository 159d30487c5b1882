"""
Websocket transport.

Maps connection ids to live websocket links and pushes JSON frames to
them. Every push is best effort: a closed or unknown target is skipped
and reported as not sent, never raised.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from MentorConnect.core.message.protocol import EventType, encode_frame

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """
    Wrapper around ServerConnection that implements TransportConnection.
    """

    def __init__(self, websocket: ServerConnection, connection_id: str):
        """
        Args:
            websocket: Underlying websocket link
            connection_id: Id assigned by the lifecycle manager
        """
        self._websocket = websocket
        self._connection_id = connection_id
        self._closed = False

    @property
    def connection_id(self) -> str:
        return self._connection_id

    @property
    def raw_websocket(self) -> ServerConnection:
        return self._websocket

    async def send(self, message: str) -> bool:
        """
        Send a text frame.

        Returns:
            True if the frame was written
        """
        if not self.is_open():
            return False
        try:
            await self._websocket.send(message)
            return True
        except ConnectionClosed as e:
            logger.debug("Failed to send to %s: %s", self._connection_id, e)
            return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        await self._websocket.close(code=code, reason=reason)

    def is_open(self) -> bool:
        if self._closed:
            return False
        return self._websocket.state is State.OPEN


class WebSocketTransport:
    """
    Registry of live websocket links keyed by connection id.

    Implements the Transport protocol used by the lifecycle manager and
    the message relay.
    """

    def __init__(self):
        self._connections: Dict[str, WebSocketConnection] = {}

    def attach(self, connection_id: str, websocket: ServerConnection) -> WebSocketConnection:
        connection = WebSocketConnection(websocket, connection_id)
        self._connections[connection_id] = connection
        return connection

    def detach(self, connection_id: str) -> Optional[WebSocketConnection]:
        return self._connections.pop(connection_id, None)

    def get(self, connection_id: str) -> Optional[WebSocketConnection]:
        return self._connections.get(connection_id)

    def connection_ids(self) -> List[str]:
        return list(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    async def send(self, connection_id: str, event: Union[EventType, str], payload: Dict[str, Any]) -> bool:
        """Push one frame to one connection."""
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug("Skipping %s push to unknown connection %s", event, connection_id)
            return False
        return await connection.send(encode_frame(event, payload))

    async def broadcast_all(self, event: Union[EventType, str], payload: Dict[str, Any]) -> int:
        """Push one frame to every attached connection. Returns how many got it."""
        frame = encode_frame(event, payload)
        reached = 0
        for connection in list(self._connections.values()):
            if await connection.send(frame):
                reached += 1
        return reached

    async def close_all(self, code: int = 1001, reason: str = "Server shutting down") -> None:
        for connection in list(self._connections.values()):
            try:
                await connection.close(code, reason)
            except ConnectionClosed:
                pass


__all__ = [
    'WebSocketConnection',
    'WebSocketTransport',
]
