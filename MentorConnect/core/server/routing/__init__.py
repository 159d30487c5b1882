"""
Message relay: persist a chat message, then push it to live connections.

Durability comes before delivery. A message is pushed only after the
persistence collaborator has stored it, so no client ever sees a message
that was not recorded. Offline recipients get nothing from the relay;
they read the message from history later.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from MentorConnect.core.logging.utils import LogTimer
from MentorConnect.core.message.protocol import (
    ChatMessage,
    ContentType,
    EventType,
    is_valid_user_id,
)
from MentorConnect.core.server.errors import PersistenceError, TransportError, ValidationError
from MentorConnect.core.server.interfaces import (
    HookContext,
    HookPhase,
    Persistence,
    PluginAwareComponent,
    Transport,
)
from MentorConnect.core.server.presence import PresenceRegistry

logger = logging.getLogger(__name__)

SLOW_WRITE_SECONDS = 0.5


@dataclass
class DeliveryReport:
    """Where a relayed message was pushed."""
    message: ChatMessage
    receiver_connections: List[str] = field(default_factory=list)
    echo_connections: List[str] = field(default_factory=list)
    failed_connections: List[str] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.message.delivered


class MessageRelay(PluginAwareComponent):
    """
    Routes one-to-one chat messages.

    Only reads the presence registry. Messages in the same chat are
    persisted and pushed one at a time, in the order the sends complete.
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        persistence: Persistence,
        transport: Transport
    ):
        super().__init__()
        self._registry = registry
        self._persistence = persistence
        self._transport = transport
        # chat_id -> [lock, holders]
        self._chat_locks: Dict[str, List[Any]] = {}

    async def send(
        self,
        sender_connection_id: str,
        receiver_id: str,
        content: str,
        type: Any = ContentType.TEXT
    ) -> ChatMessage:
        """
        Send a message from an identified connection.

        Args:
            sender_connection_id: Connection the request arrived on
            receiver_id: Recipient user id (need not be online or known)
            content: Message body
            type: text, image or file

        Returns:
            The persisted message, ``delivered`` set if the recipient was online

        Raises:
            ValidationError: sender not identified, empty content, unknown
                type or malformed receiver id. Nothing is persisted.
            PersistenceError: the store failed. Nothing is pushed.
        """
        report = await self.deliver(sender_connection_id, receiver_id, content, type)
        return report.message

    async def deliver(
        self,
        sender_connection_id: str,
        receiver_id: str,
        content: str,
        type: Any = ContentType.TEXT
    ) -> DeliveryReport:
        """
        Like :meth:`send`, but returns where this message was pushed.

        The originating connection is never pushed to; the caller answers it.
        """
        sender_id = self._registry.user_for(sender_connection_id)
        if sender_id is None:
            raise ValidationError("Sender connection is not identified", code="UNIDENTIFIED")
        return await self._relay(sender_id, receiver_id, content, type, origin=sender_connection_id)

    async def send_from_user(
        self,
        sender_id: str,
        receiver_id: str,
        content: str,
        type: Any = ContentType.TEXT
    ) -> ChatMessage:
        """
        Send on behalf of a user without a live connection (HTTP API).

        Every live connection of the sender receives the ``messageSent`` echo.
        """
        report = await self.deliver_from_user(sender_id, receiver_id, content, type)
        return report.message

    async def deliver_from_user(
        self,
        sender_id: str,
        receiver_id: str,
        content: str,
        type: Any = ContentType.TEXT
    ) -> DeliveryReport:
        if not is_valid_user_id(sender_id):
            raise ValidationError("Malformed sender id", code="INVALID_USER_ID")
        return await self._relay(sender_id, receiver_id, content, type, origin=None)

    async def history(self, user_id: str, other_id: str, limit: int = 50) -> List[ChatMessage]:
        """Stored messages between two users, oldest first."""
        if not is_valid_user_id(other_id):
            raise ValidationError("Malformed user id", code="INVALID_USER_ID")
        return await self._persistence.get_history(user_id, other_id, limit)

    async def chats(self, user_id: str) -> List[Dict[str, Any]]:
        """
        One summary per conversation partner, most recent first.

        ``is_online`` reflects live presence rather than the stored flag.
        """
        chats = await self._persistence.list_chats(user_id)
        for chat in chats:
            chat["is_online"] = self._registry.is_online(chat["with"])
        return chats

    async def _relay(
        self,
        sender_id: str,
        receiver_id: str,
        content: str,
        type: Any,
        origin: Optional[str]
    ) -> DeliveryReport:
        message = self._build_message(sender_id, receiver_id, content, type)
        cancelled = False

        async with self._chat_lock(message.chat_id):
            write = asyncio.ensure_future(self._persistence.save_message(message))
            try:
                try:
                    with LogTimer("save_message", logger, slow_after=SLOW_WRITE_SECONDS):
                        stored = await asyncio.shield(write)
                except asyncio.CancelledError:
                    # The write carries on: keep the chat locked until it lands
                    # and still deliver it, then let the cancellation through.
                    cancelled = True
                    stored = await write
            except PersistenceError as e:
                logger.warning("Message from %s to %s not stored: %s", sender_id, receiver_id, e)
                raise
            report = await self._fan_out(stored, origin)

        self._execute_hooks(
            HookPhase.POST_SEND,
            HookContext(phase=HookPhase.POST_SEND, user_id=sender_id,
                        connection_id=origin, message=stored, metadata={"report": report})
        )
        if cancelled:
            logger.debug("Send of %s cancelled after it was stored and pushed", stored.id)
            raise asyncio.CancelledError()
        return report

    # noinspection PyMethodMayBeStatic
    def _build_message(self, sender_id: str, receiver_id: Any, content: Any, type: Any) -> ChatMessage:
        if not is_valid_user_id(receiver_id):
            raise ValidationError("Malformed receiver id", code="INVALID_RECEIVER")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content is empty", code="EMPTY_CONTENT")
        try:
            content_type = ContentType.parse(type)
        except ValueError:
            raise ValidationError(f"Unsupported message type: {type!r}", code="INVALID_TYPE")
        return ChatMessage.create(sender_id, receiver_id, content, content_type)

    async def _fan_out(self, message: ChatMessage, origin: Optional[str]) -> DeliveryReport:
        # Looked up after the write completed: only connections live now get the push.
        receiver_conns = self._registry.connections_for(message.receiver_id)
        message.delivered = bool(receiver_conns)
        report = DeliveryReport(message)
        payload = {"message": message.to_dict()}

        # the origin is answered by the caller, even when it is a receiver too
        for connection_id in sorted(receiver_conns - {origin}):
            if await self._push(connection_id, EventType.MESSAGE_DELIVERED, payload):
                report.receiver_connections.append(connection_id)
            else:
                report.failed_connections.append(connection_id)

        echo_conns = self._registry.connections_for(message.sender_id) - receiver_conns
        echo_conns.discard(origin)
        for connection_id in sorted(echo_conns):
            if await self._push(connection_id, EventType.MESSAGE_SENT, payload):
                report.echo_connections.append(connection_id)
            else:
                report.failed_connections.append(connection_id)

        logger.debug(
            "Message %s in %s: %d delivered, %d echoed, %d failed",
            message.id, message.chat_id, len(report.receiver_connections),
            len(report.echo_connections), len(report.failed_connections)
        )
        return report

    async def _push(self, connection_id: str, event: EventType, payload: Dict[str, Any]) -> bool:
        try:
            return await self._transport.send(connection_id, event.value, payload)
        except TransportError as e:
            logger.debug("Push of %s to %s failed: %s", event.value, connection_id, e)
            return False

    @asynccontextmanager
    async def _chat_lock(self, chat_id: str):
        entry = self._chat_locks.get(chat_id)
        if entry is None:
            entry = self._chat_locks[chat_id] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._chat_locks.pop(chat_id, None)


__all__ = [
    'MessageRelay',
    'DeliveryReport',
]
