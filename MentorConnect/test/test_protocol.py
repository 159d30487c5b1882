"""
Unit tests for the wire protocol and chat message record.
"""

import json

import pytest

from MentorConnect.core.message.protocol import (
    ChatMessage,
    ContentType,
    Envelope,
    EventType,
    FrameError,
    chat_id,
    encode_frame,
    is_valid_user_id,
)


class TestChatId:

    def test_order_independent(self):
        assert chat_id("alice", "bob") == chat_id("bob", "alice") == "alice:bob"

    def test_self_chat(self):
        assert chat_id("alice", "alice") == "alice:alice"

    @pytest.mark.parametrize("user_id", ["alice", "user_42", "a.b-c@d", "x" * 128])
    def test_valid_user_ids(self, user_id):
        assert is_valid_user_id(user_id)

    @pytest.mark.parametrize("user_id", ["", None, 42, "has space", "a:b", "x" * 129])
    def test_invalid_user_ids(self, user_id):
        assert not is_valid_user_id(user_id)


class TestContentType:

    def test_missing_type_means_text(self):
        assert ContentType.parse(None) is ContentType.TEXT
        assert ContentType.parse("") is ContentType.TEXT

    def test_parse_is_case_insensitive(self):
        assert ContentType.parse("IMAGE") is ContentType.IMAGE

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            ContentType.parse("video")


class TestChatMessage:

    def test_create_derives_chat_id(self):
        message = ChatMessage.create("bob", "alice", "hi")

        assert message.chat_id == "alice:bob"
        assert message.type is ContentType.TEXT
        assert message.id is None
        assert not message.delivered

    def test_dict_form(self):
        message = ChatMessage.create("alice", "bob", "http://x/y.png", ContentType.IMAGE)
        message.id = 7

        data = message.to_dict()
        assert data["type"] == "image"
        assert data["id"] == 7

        restored = ChatMessage.from_dict(data)
        assert restored == message


class TestEnvelope:

    def test_encode_frame(self):
        frame = json.loads(encode_frame(EventType.PONG, {}))
        assert frame == {"event": "pong", "data": {}}

    def test_deserialize(self):
        envelope = Envelope.deserialize('{"event": "sendMessage", "data": {"content": "hi"}}')

        assert envelope.event is EventType.SEND_MESSAGE
        assert envelope.data == {"content": "hi"}

    def test_deserialize_bytes_and_missing_data(self):
        envelope = Envelope.deserialize(b'{"event": "ping"}')

        assert envelope.event is EventType.PING
        assert envelope.data == {}

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2]",
        '{"event": "dance"}',
        '{"data": {}}',
        '{"event": "ping", "data": [1]}',
        b"\xff\xfe",
    ])
    def test_bad_frames(self, raw):
        with pytest.raises(FrameError):
            Envelope.deserialize(raw)
