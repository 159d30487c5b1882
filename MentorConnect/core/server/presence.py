"""Presence tracking for the MentorConnect relay.

Tracks which users are online across multiple connections (browser tabs,
devices). A user is online while at least one of their connections is
registered; removing the last connection removes the user.

Every operation is synchronous and in-memory, so a mutation can never be
observed half-done by another asyncio task.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Maps user id -> live connection ids, with a reverse index."""

    def __init__(self) -> None:
        # user -> {conn_id}
        self._by_user: Dict[str, Set[str]] = {}
        # conn_id -> user
        self._by_connection: Dict[str, str] = {}

    def register(self, user_id: str, connection_id: str) -> None:
        """Add ``connection_id`` to ``user_id``. Registering the same pair twice is a no-op."""
        current = self._by_connection.get(connection_id)
        if current == user_id:
            return
        if current is not None:
            # a connection belongs to exactly one user
            self.unregister(connection_id)
        self._by_user.setdefault(user_id, set()).add(connection_id)
        self._by_connection[connection_id] = user_id
        logger.debug("Registered %s for user %s (%d live)",
                     connection_id, user_id, len(self._by_user[user_id]))

    def unregister(self, connection_id: str) -> Optional[str]:
        """Remove a connection. Returns the user it belonged to, or None if unknown."""
        user_id = self._by_connection.pop(connection_id, None)
        if user_id is None:
            return None
        conns = self._by_user.get(user_id)
        if conns is not None:
            conns.discard(connection_id)
            if not conns:
                self._by_user.pop(user_id, None)
        logger.debug("Unregistered %s for user %s", connection_id, user_id)
        return user_id

    def is_online(self, user_id: str) -> bool:
        return bool(self._by_user.get(user_id))

    def connections_for(self, user_id: str) -> Set[str]:
        return set(self._by_user.get(user_id, ()))

    def user_for(self, connection_id: str) -> Optional[str]:
        return self._by_connection.get(connection_id)

    def online_user_ids(self) -> Set[str]:
        return set(self._by_user)

    def snapshot(self) -> Dict[str, Set[str]]:
        """Return {user_id: {connection_id}} as an independent copy."""
        return {user: set(conns) for user, conns in self._by_user.items()}

    def __len__(self) -> int:
        return len(self._by_user)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._by_user
