"""
Connection lifecycle management.

Each live link moves through UNIDENTIFIED -> IDENTIFIED -> CLOSED. The
lifecycle manager is the only writer of the presence registry: it
registers a connection when the client identifies, unregisters it on
close, and broadcasts the online-user set whenever that set may have
changed.

Persisting a user's online flag is a fire-and-forget side effect. Its
failure is logged and reported through the SIDE_EFFECT_FAILED hook but
never undoes or blocks the in-memory transition. Writes for one user are
applied in the order of the transitions that caused them.
"""

import asyncio
import functools
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Set

from MentorConnect.core.message.protocol import EventType, is_valid_user_id
from MentorConnect.core.server.errors import ValidationError
from MentorConnect.core.server.interfaces import (
    HookContext,
    HookPhase,
    Persistence,
    PluginAwareComponent,
    Transport,
)
from MentorConnect.core.server.presence import PresenceRegistry

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """States of a single connection."""
    UNIDENTIFIED = auto()
    IDENTIFIED = auto()
    CLOSED = auto()


@dataclass
class Connection:
    """
    One live client link.

    Attributes:
        connection_id: Opaque id, unique per link
        user_id: Identity announced by the client, None until identified
        joined_at: Epoch seconds when the link was opened
        state: Current lifecycle state
        identified_at: Epoch seconds of the latest identify
    """
    connection_id: str
    user_id: Optional[str] = None
    joined_at: float = field(default_factory=time.time)
    state: ConnectionState = ConnectionState.UNIDENTIFIED
    identified_at: Optional[float] = None

    @property
    def is_identified(self) -> bool:
        return self.state is ConnectionState.IDENTIFIED

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED


class ConnectionLifecycleManager(PluginAwareComponent):
    """
    Binds connections to user identities and keeps presence in sync.

    Registry mutations and state changes happen before the first await of
    every transition, so other tasks only ever see a consistent registry.
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        transport: Transport,
        persistence: Optional[Persistence] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize the lifecycle manager.

        Args:
            registry: Presence registry this manager owns writes to
            transport: Used to broadcast presence changes
            persistence: Receives online/offline flags; None disables persisting
            clock: Source of timestamps
        """
        super().__init__()
        self._registry = registry
        self._transport = transport
        self._persistence = persistence
        self._clock = clock
        self._connections: Dict[str, Connection] = {}
        self._pending: Set[asyncio.Task] = set()
        # user_id -> latest status write; each write waits for the one before
        self._status_writes: Dict[str, asyncio.Task] = {}
        self._broadcast_lock = asyncio.Lock()
        self.side_effect_failures = 0

    @property
    def registry(self) -> PresenceRegistry:
        return self._registry

    def get(self, connection_id: str) -> Optional[Connection]:
        """Get a live (not yet closed) connection."""
        return self._connections.get(connection_id)

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def online_user_ids(self) -> List[str]:
        return sorted(self._registry.online_user_ids())

    def open(self, connection_id: Optional[str] = None) -> Connection:
        """
        Start tracking a new link in the UNIDENTIFIED state.

        Args:
            connection_id: Id to use; a random one is generated when omitted
        """
        connection = Connection(connection_id=connection_id or uuid.uuid4().hex,
                                joined_at=self._clock())
        self._connections[connection.connection_id] = connection
        logger.debug("Connection %s opened", connection.connection_id)
        self._execute_hooks(
            HookPhase.POST_OPEN,
            HookContext(phase=HookPhase.POST_OPEN, connection_id=connection.connection_id)
        )
        return connection

    async def identify(self, connection_id: str, user_id: str) -> Connection:
        """
        Bind a connection to ``user_id`` and announce the new presence.

        Identifying again as another user first releases the previous
        identity. Identifying again as the same user is idempotent.

        Raises:
            ValidationError: malformed user id, or the connection is
                unknown or already closed. Nothing is mutated.
        """
        if not is_valid_user_id(user_id):
            raise ValidationError("Malformed user id", code="INVALID_USER_ID")
        connection = self._connections.get(connection_id)
        if connection is None or connection.is_closed:
            raise ValidationError("Connection is not open", code="CONNECTION_CLOSED")

        now = self._clock()
        previous = connection.user_id if connection.is_identified else None
        if previous is not None and previous != user_id:
            self._registry.unregister(connection_id)
            self._persist_status(previous, self._registry.is_online(previous), now)
            logger.info("Connection %s re-identified: %s -> %s", connection_id, previous, user_id)

        self._registry.register(user_id, connection_id)
        connection.user_id = user_id
        connection.state = ConnectionState.IDENTIFIED
        connection.identified_at = now
        self._persist_status(user_id, True, now)

        logger.info("User %s online via %s", user_id, connection_id)
        self._execute_hooks(
            HookPhase.POST_IDENTIFY,
            HookContext(phase=HookPhase.POST_IDENTIFY, user_id=user_id, connection_id=connection_id)
        )
        await self._broadcast_presence()
        return connection

    async def close(self, connection_id: str) -> Optional[Connection]:
        """
        Mark a connection CLOSED and release its presence.

        Closing an unknown or already closed connection is a no-op that
        returns None.
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None

        was_identified = connection.is_identified
        connection.state = ConnectionState.CLOSED
        logger.debug("Connection %s closed", connection_id)

        if was_identified:
            user_id = connection.user_id
            self._registry.unregister(connection_id)
            still_online = self._registry.is_online(user_id)
            self._persist_status(user_id, still_online, self._clock())
            if not still_online:
                logger.info("User %s offline", user_id)

        self._execute_hooks(
            HookPhase.POST_CLOSE,
            HookContext(phase=HookPhase.POST_CLOSE, user_id=connection.user_id,
                        connection_id=connection_id, metadata={"was_identified": was_identified})
        )
        if was_identified:
            await self._broadcast_presence()
        return connection

    async def close_all(self) -> int:
        """Close every tracked connection. Returns how many were closed."""
        closed = 0
        for connection_id in list(self._connections):
            if await self.close(connection_id) is not None:
                closed += 1
        return closed

    async def drain(self) -> None:
        """Wait until every pending side effect has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _broadcast_presence(self) -> None:
        # The snapshot is taken under the lock so broadcasts go out in
        # order and the last one always matches the registry.
        async with self._broadcast_lock:
            online = self.online_user_ids()
            reached = await self._transport.broadcast_all(
                EventType.PRESENCE_CHANGED.value,
                {"online_user_ids": online}
            )
            logger.debug("Presence broadcast to %d connections: %s", reached, online)
            self._execute_hooks(
                HookPhase.PRESENCE_CHANGED,
                HookContext(phase=HookPhase.PRESENCE_CHANGED, metadata={"online_user_ids": online})
            )

    def _persist_status(self, user_id: str, is_online: bool, when: float) -> None:
        if self._persistence is None:
            return
        previous = self._status_writes.get(user_id)
        task = asyncio.create_task(self._write_status(previous, user_id, is_online, when))
        self._status_writes[user_id] = task
        self._pending.add(task)
        task.add_done_callback(functools.partial(self._side_effect_done, user_id))

    async def _write_status(
        self,
        previous: Optional[asyncio.Task],
        user_id: str,
        is_online: bool,
        when: float
    ) -> None:
        # A user's writes land in transition order; the previous write's
        # failure was already reported by its own callback.
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        await self._persistence.set_user_online_status(user_id, is_online, when)

    def _side_effect_done(self, user_id: str, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if self._status_writes.get(user_id) is task:
            del self._status_writes[user_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        self.side_effect_failures += 1
        logger.warning("Could not persist online status for %s: %s", user_id, error)
        self._execute_hooks(
            HookPhase.SIDE_EFFECT_FAILED,
            HookContext(phase=HookPhase.SIDE_EFFECT_FAILED, user_id=user_id, error=error)
        )


__all__ = [
    'Connection',
    'ConnectionState',
    'ConnectionLifecycleManager',
]
