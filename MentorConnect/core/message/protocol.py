"""
Wire protocol for the MentorConnect relay.

Every websocket frame is a JSON object ``{"event": <name>, "data": {...}}``.
This module also defines the chat message record shared by the relay,
the storage layer and the HTTP API.
"""

import json
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

# no ':' here, it separates the two ids in a chat id
USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.@-]{1,128}$")
CHAT_ID_SEPARATOR = ":"


class EventType(Enum):
    """
    Event names carried in the ``event`` field of a frame.
    """
    # client -> server
    IDENTIFY = "identify"
    SEND_MESSAGE = "sendMessage"
    FETCH_HISTORY = "fetchHistory"
    PING = "ping"

    # server -> client
    CONNECTION_OPENED = "connectionOpened"
    IDENTIFIED = "identified"
    PRESENCE_CHANGED = "presenceChanged"
    MESSAGE_DELIVERED = "messageDelivered"
    MESSAGE_SENT = "messageSent"
    MESSAGE_REJECTED = "messageRejected"
    HISTORY = "history"
    PONG = "pong"


class ContentType(Enum):
    """Kinds of chat message content."""
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"

    @classmethod
    def parse(cls, value: Any) -> 'ContentType':
        """
        Resolve a content type from its wire value.

        ``None`` and the empty string mean TEXT.

        Raises:
            ValueError: if the value is not a recognized type
        """
        if isinstance(value, cls):
            return value
        if value is None or value == "":
            return cls.TEXT
        return cls(str(value).lower())


def is_valid_user_id(user_id: Any) -> bool:
    """True if ``user_id`` is a non-empty opaque id in the accepted format."""
    return isinstance(user_id, str) and USER_ID_PATTERN.match(user_id) is not None


def chat_id(user_a: str, user_b: str) -> str:
    """
    Conversation id for a pair of users.

    Order independent: ``chat_id(a, b) == chat_id(b, a)``.
    """
    first, second = (user_a, user_b) if user_a <= user_b else (user_b, user_a)
    return f"{first}{CHAT_ID_SEPARATOR}{second}"


@dataclass
class ChatMessage:
    """
    A one-to-one chat message.

    Attributes:
        chat_id: Conversation id derived from the two participants
        sender_id: Author
        receiver_id: Recipient
        content: Body (text, or a URL for image/file messages)
        type: Content kind
        created_at: Epoch seconds, set when the relay accepts the message
        id: Storage row id, None until persisted
        is_read: Read acknowledgement flag
        delivered: True if the recipient had a live connection at send time.
            Derived by the relay and never stored.
    """
    chat_id: str
    sender_id: str
    receiver_id: str
    content: str
    type: ContentType = ContentType.TEXT
    created_at: float = field(default_factory=time.time)
    id: Optional[int] = None
    is_read: bool = False
    delivered: bool = False

    @classmethod
    def create(
        cls,
        sender_id: str,
        receiver_id: str,
        content: str,
        type: ContentType = ContentType.TEXT
    ) -> 'ChatMessage':
        return cls(
            chat_id=chat_id(sender_id, receiver_id),
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            type=type,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "content": self.content,
            "type": self.type.value,
            "created_at": self.created_at,
            "is_read": self.is_read,
            "delivered": self.delivered,
        }

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> 'ChatMessage':
        return cls(
            chat_id=obj["chat_id"],
            sender_id=obj["sender_id"],
            receiver_id=obj["receiver_id"],
            content=obj["content"],
            type=ContentType.parse(obj.get("type")),
            created_at=float(obj.get("created_at") or time.time()),
            id=obj.get("id"),
            is_read=bool(obj.get("is_read", False)),
            delivered=bool(obj.get("delivered", False)),
        )


def encode_frame(event: Union[EventType, str], payload: Dict[str, Any]) -> str:
    """Serialize one outbound frame."""
    name = event.value if isinstance(event, EventType) else event
    return json.dumps({"event": name, "data": payload})


class FrameError(ValueError):
    """Raised when an inbound frame cannot be decoded."""


@dataclass
class Envelope:
    """
    One websocket frame.

    Attributes:
        event: Event name
        data: Event payload
    """
    event: EventType
    data: Dict[str, Any] = field(default_factory=dict)

    def serialize(self) -> str:
        return encode_frame(self.event, self.data)

    @classmethod
    def deserialize(cls, raw: Any) -> 'Envelope':
        """
        Decode a frame received from a client.

        Raises:
            FrameError: for invalid JSON, a missing or unknown event name,
                or a payload that is not an object
        """
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise FrameError("Frame is not valid UTF-8") from e
        try:
            obj = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            raise FrameError("Frame is not valid JSON") from e
        if not isinstance(obj, dict):
            raise FrameError("Frame must be a JSON object")
        try:
            event = EventType(obj.get("event"))
        except ValueError as e:
            raise FrameError(f"Unknown event: {obj.get('event')!r}") from e
        data = obj.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise FrameError("Frame data must be a JSON object")
        return cls(event, data)
