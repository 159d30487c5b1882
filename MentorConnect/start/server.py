"""
Server startup module for MentorConnect.
Provides the entry point for starting the relay and its HTTP api.
"""

import asyncio
import logging
from typing import Optional

import uvicorn

from MentorConnect.api.routes import create_app
from MentorConnect.config import config
from MentorConnect.core.logging import auto_configure
from MentorConnect.core.server.storage_sqlite import SQLitePersistence, SQLiteStore
from MentorConnect.core.server.websocket_manager import RelayServer

logger = logging.getLogger(__name__)


def server(
    host: Optional[str] = None,
    port: Optional[int] = None,
    api_port: Optional[int] = None,
    db_path: Optional[str] = None,
    srv_only: bool = False
):
    """
    Start the relay server and, unless ``srv_only``, the HTTP api.

    Both run in the same event loop so the api shares the live presence
    registry with the websocket server.

    Args:
        host (str): Listening address (default: config.DEFAULT_HOST)
        port (int): Websocket port (default: config.DEFAULT_SERVER_PORT)
        api_port (int): HTTP port (default: config.DEFAULT_API_PORT)
        db_path (str): SQLite file (default: config.SQLITE_DB_FILE)
        srv_only (bool): If True, serve only the websocket server.
    """
    env = auto_configure()
    host = host or config.DEFAULT_HOST
    port = config.DEFAULT_SERVER_PORT if port is None else port
    api_port = config.DEFAULT_API_PORT if api_port is None else api_port

    store = SQLiteStore(db_path or config.SQLITE_DB_FILE)
    # Nobody is connected yet
    reset = store.reset_online_flags()
    logger.info("Starting MentorConnect relay (%s); %d stale online flags reset", env, reset)

    relay_server = RelayServer(persistence=SQLitePersistence(store))

    async def main():
        async with relay_server.run(host, port):
            if srv_only:
                await asyncio.Future()
            else:
                http = uvicorn.Server(uvicorn.Config(
                    create_app(relay_server), host=host, port=api_port, log_config=None
                ))
                await http.serve()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Closed by user.")
    finally:
        store.close()
