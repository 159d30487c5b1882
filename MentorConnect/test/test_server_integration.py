"""
Integration tests for the relay server.

Starts a real websocket server on an ephemeral port and drives it with
websocket clients.

Run with: pytest MentorConnect/test/test_server_integration.py -v
"""

import asyncio
import json

import pytest
import pytest_asyncio
from websockets.asyncio.client import connect

from MentorConnect.core.server.auth import JWTAuthenticator
from MentorConnect.core.server.storage_sqlite import SQLitePersistence, SQLiteStore
from MentorConnect.core.server.websocket_manager import RelayServer
from MentorConnect.test.helpers import TEST_SECRET, make_token, recv_until, send_event

pytestmark = pytest.mark.integration


def _server(store, require_token=False) -> RelayServer:
    return RelayServer(
        persistence=SQLitePersistence(store),
        authenticator=JWTAuthenticator(secret=TEST_SECRET),
        require_token=require_token,
    )


@pytest_asyncio.fixture
async def relay_server(store):
    server = _server(store)
    async with server.run("127.0.0.1", 0):
        yield server


def _url(server: RelayServer, query: str = "") -> str:
    return f"ws://127.0.0.1:{server.port}/{query}"


async def _identify(websocket, user_id):
    await recv_until(websocket, "connectionOpened")
    await send_event(websocket, "identify", {"user_id": user_id})
    return await recv_until(websocket, "identified")


class TestPresenceFlow:

    @pytest.mark.asyncio
    async def test_identify_announces_presence(self, relay_server):
        async with connect(_url(relay_server)) as alice:
            opened = await recv_until(alice, "connectionOpened")
            assert opened["connection_id"]

            await send_event(alice, "identify", {"user_id": "alice"})
            presence = await recv_until(alice, "presenceChanged")
            identified = await recv_until(alice, "identified")

            assert identified == {"user_id": "alice"}
            assert presence == {"online_user_ids": ["alice"]}
            assert relay_server.registry.is_online("alice")

    @pytest.mark.asyncio
    async def test_disconnect_announces_departure(self, relay_server):
        async with connect(_url(relay_server)) as alice:
            await _identify(alice, "alice")
            async with connect(_url(relay_server)) as bob:
                await _identify(bob, "bob")
                await recv_until(alice, "presenceChanged",
                                 lambda d: d["online_user_ids"] == ["alice", "bob"])

            presence = await recv_until(alice, "presenceChanged",
                                        lambda d: d["online_user_ids"] == ["alice"])
            assert presence == {"online_user_ids": ["alice"]}
            assert not relay_server.registry.is_online("bob")

    @pytest.mark.asyncio
    async def test_handshake_token_identifies(self, relay_server):
        token = make_token("alice")
        async with connect(_url(relay_server, f"?token={token}")) as alice:
            identified = await recv_until(alice, "identified")

            assert identified == {"user_id": "alice"}

    @pytest.mark.asyncio
    async def test_invalid_user_id_rejected(self, relay_server):
        async with connect(_url(relay_server)) as client:
            await recv_until(client, "connectionOpened")
            await send_event(client, "identify", {"user_id": "no spaces allowed"})

            rejected = await recv_until(client, "messageRejected")

            assert rejected["code"] == "INVALID_USER_ID"
            assert len(relay_server.registry) == 0


class TestMessaging:

    @pytest.mark.asyncio
    async def test_message_to_online_user(self, relay_server):
        async with connect(_url(relay_server)) as alice, connect(_url(relay_server)) as bob:
            await _identify(alice, "alice")
            await _identify(bob, "bob")

            await send_event(alice, "sendMessage",
                             {"receiver_id": "bob", "content": "hello bob", "client_id": "tmp-1"})

            sent = await recv_until(alice, "messageSent")
            delivered = await recv_until(bob, "messageDelivered")

            assert sent["client_id"] == "tmp-1"
            assert sent["message"]["delivered"] is True
            assert delivered["message"]["content"] == "hello bob"
            assert delivered["message"]["id"] == sent["message"]["id"]

    @pytest.mark.asyncio
    async def test_message_to_self_answers_origin_once(self, relay_server):
        async with connect(_url(relay_server)) as alice:
            await _identify(alice, "alice")

            await send_event(alice, "sendMessage",
                             {"receiver_id": "alice", "content": "note to self", "client_id": "tmp-2"})
            await send_event(alice, "ping")

            frames = []
            while not frames or frames[-1]["event"] != "pong":
                frames.append(json.loads(await asyncio.wait_for(alice.recv(), 3.0)))

            message_frames = [f for f in frames if f["event"].startswith("message")]
            assert [f["event"] for f in message_frames] == ["messageSent"]
            assert message_frames[0]["data"]["client_id"] == "tmp-2"
            assert message_frames[0]["data"]["message"]["delivered"] is True

    @pytest.mark.asyncio
    async def test_message_to_offline_user_kept_in_history(self, relay_server):
        async with connect(_url(relay_server)) as alice:
            await _identify(alice, "alice")

            await send_event(alice, "sendMessage", {"receiver_id": "bob", "content": "later"})
            sent = await recv_until(alice, "messageSent")
            assert sent["message"]["delivered"] is False

        async with connect(_url(relay_server)) as bob:
            await _identify(bob, "bob")
            await send_event(bob, "fetchHistory", {"with": "alice"})

            history = await recv_until(bob, "history")

            assert history["with"] == "alice"
            assert [m["content"] for m in history["messages"]] == ["later"]

    @pytest.mark.asyncio
    async def test_unidentified_send_rejected(self, relay_server):
        async with connect(_url(relay_server)) as client:
            await recv_until(client, "connectionOpened")
            await send_event(client, "sendMessage",
                             {"receiver_id": "bob", "content": "hi", "client_id": "c-9"})

            rejected = await recv_until(client, "messageRejected")

            assert rejected["code"] == "UNIDENTIFIED"
            assert rejected["client_id"] == "c-9"

    @pytest.mark.asyncio
    async def test_bad_frame_keeps_connection_open(self, relay_server):
        async with connect(_url(relay_server)) as client:
            await recv_until(client, "connectionOpened")
            await client.send("{not json")

            rejected = await recv_until(client, "messageRejected")
            assert rejected["code"] == "BAD_FRAME"

            await send_event(client, "ping")
            assert await recv_until(client, "pong") == {}

    @pytest.mark.asyncio
    async def test_fetch_history_invalid_limit(self, relay_server):
        async with connect(_url(relay_server)) as alice:
            await _identify(alice, "alice")
            await send_event(alice, "fetchHistory", {"with": "bob", "limit": "many"})

            rejected = await recv_until(alice, "messageRejected")

            assert rejected["code"] == "INVALID_LIMIT"


class TestRequireToken:

    @pytest.mark.asyncio
    async def test_plain_identify_refused(self, store):
        server = _server(store, require_token=True)
        async with server.run("127.0.0.1", 0):
            async with connect(_url(server)) as client:
                await recv_until(client, "connectionOpened")
                await send_event(client, "identify", {"user_id": "alice"})

                rejected = await recv_until(client, "messageRejected")
                assert rejected["code"] == "TOKEN_REQUIRED"

                await send_event(client, "identify", {"token": make_token("alice")})
                assert await recv_until(client, "identified") == {"user_id": "alice"}
