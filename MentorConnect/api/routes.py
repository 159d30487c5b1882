# Standard library imports
import logging

# Third-party imports
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from starlette.requests import Request

# Local imports
from MentorConnect import __version__ as __main_version__
from MentorConnect.config import config
from MentorConnect.core.server.errors import PersistenceError, ValidationError
from MentorConnect.core.server.websocket_manager import MAX_HISTORY_LIMIT, RelayServer

logger = logging.getLogger(__name__)


class SendMessageRequest(BaseModel):
    receiver_id: str
    content: str
    type: str = "text"


def _relay_server(request: Request) -> RelayServer:
    return request.app.state.relay_server


async def get_current_user(request: Request) -> str:
    """Extract and validate current user from Authorization bearer token."""
    auth = request.headers.get("Authorization")
    if not auth or not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="No valid authentication token provided")
    token = auth.split(" ", 1)[1].strip()
    result = await _relay_server(request).authenticator.authenticate(token)
    if not result.success:
        raise HTTPException(status_code=401, detail=result.error_message or "Invalid token")
    return result.user_id


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=e.to_payload())
    logger.error("Persistence failure serving HTTP request: %s", e)
    return HTTPException(status_code=503, detail=e.to_payload())


def create_app(server: RelayServer) -> FastAPI:
    """
    Build the HTTP API around a relay server.

    The app shares the server's registry, relay and persistence, so it
    must run in the same event loop as the websocket server.
    """
    app = FastAPI(
        title="MentorConnect api",
        version=__main_version__,
        description="HTTP api for the MentorConnect presence and chat relay.",
        contact={"name": "MentorConnect Team"}
    )
    app.state.relay_server = server

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "version": __main_version__,
            "websocket_running": server.is_running,
            "online_users": len(server.registry.online_user_ids()),
        }

    @app.get("/api/presence")
    async def presence():
        return {"success": True, "online_user_ids": server.lifecycle.online_user_ids()}

    @app.get("/api/messages/chats")
    async def list_chats(user_id: str = Depends(get_current_user)):
        try:
            chats = await server.relay.chats(user_id)
        except PersistenceError as e:
            raise _http_error(e)
        return {"success": True, "chats": chats}

    @app.post("/api/messages/send", status_code=201)
    async def send_message(payload: SendMessageRequest, user_id: str = Depends(get_current_user)):
        try:
            message = await server.relay.send_from_user(
                user_id, payload.receiver_id, payload.content, payload.type
            )
        except (ValidationError, PersistenceError) as e:
            raise _http_error(e)
        return {"success": True, "message": message.to_dict()}

    @app.get("/api/messages/{other_id}")
    async def get_history(other_id: str, limit: int = config.HISTORY_LIMIT,
                          user_id: str = Depends(get_current_user)):
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        try:
            messages = await server.relay.history(user_id, other_id, limit)
        except (ValidationError, PersistenceError) as e:
            raise _http_error(e)
        return {"success": True, "with": other_id, "messages": [m.to_dict() for m in messages]}

    @app.post("/api/messages/{other_id}/read")
    async def mark_read(other_id: str, user_id: str = Depends(get_current_user)):
        try:
            marked = await server.persistence.mark_read(user_id, other_id)
        except PersistenceError as e:
            raise _http_error(e)
        return {"success": True, "marked": marked}

    return app
