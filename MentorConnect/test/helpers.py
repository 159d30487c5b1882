"""
Shared helpers for relay tests.
"""

import asyncio
import json
import time
from typing import Any, Callable, Dict, Optional

import jwt

TEST_SECRET = "mentorconnect-test-secret"


def make_token(user_id: str, secret: str = TEST_SECRET, expires_in: int = 3600, claim: str = "sub") -> str:
    """Generate a signed token carrying ``user_id`` in ``claim``."""
    now = int(time.time())
    payload = {
        claim: user_id,
        "exp": now + expires_in,
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


async def recv_until(
    websocket,
    event: str,
    predicate: Optional[Callable[[Dict[str, Any]], bool]] = None,
    timeout: float = 3.0
) -> Dict[str, Any]:
    """Read frames until one named ``event`` (matching ``predicate``) arrives; return its data."""
    async def _wait():
        while True:
            frame = json.loads(await websocket.recv())
            if frame["event"] == event and (predicate is None or predicate(frame["data"])):
                return frame["data"]

    return await asyncio.wait_for(_wait(), timeout)


async def send_event(websocket, event: str, data: Optional[Dict[str, Any]] = None) -> None:
    await websocket.send(json.dumps({"event": event, "data": data or {}}))
