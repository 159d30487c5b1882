"""
Server module for MentorConnect.

Realtime presence and one-to-one chat delivery over websockets.

Architecture Overview:
---------------------

1. **Presence** (`presence.py`)
   - PresenceRegistry: user id <-> live connection ids

2. **Session Management** (`session/`)
   - ConnectionLifecycleManager: UNIDENTIFIED -> IDENTIFIED -> CLOSED,
     presence broadcasts, online-flag persistence
   - Connection / ConnectionState: per-link data model

3. **Message Routing** (`routing/`)
   - MessageRelay: persist, then push to the receiver's live connections
     and echo to the sender's other connections
   - DeliveryReport: where a relayed message went

4. **Transport Layer** (`transport/`)
   - WebSocketConnection: Connection wrapper
   - WebSocketTransport: connection id -> websocket, best-effort pushes

5. **Authentication** (`auth/`)
   - JWTAuthenticator: token validation, handshake token extraction

6. **Storage** (`storage_sqlite.py`)
   - SQLiteStore / SQLitePersistence: messages and online flags

7. **Websocket server** (`websocket_manager.py`)
   - RelayServer: composes all of the above and dispatches client events

Usage:
    from MentorConnect.core.server import RelayServer, HookPhase

    server = RelayServer()
    server.relay.register_hook(HookPhase.POST_SEND, lambda ctx: ctx)

    async with server.run("localhost", 8765):
        await asyncio.Future()
"""

from MentorConnect.core.server.auth import (
    JWTAuthenticator,
    DefaultTokenExtractor,
)
from MentorConnect.core.server.errors import (
    RelayError,
    ValidationError,
    PersistenceError,
    TransportError,
)
from MentorConnect.core.server.interfaces import (
    Authenticator,
    AuthResult,
    Persistence,
    Transport,
    TransportConnection,
    HookPhase,
    HookContext,
    HookFunction,
    PluginAwareComponent,
)
from MentorConnect.core.server.presence import PresenceRegistry
from MentorConnect.core.server.routing import (
    MessageRelay,
    DeliveryReport,
)
from MentorConnect.core.server.session import (
    Connection,
    ConnectionState,
    ConnectionLifecycleManager,
)
from MentorConnect.core.server.storage_sqlite import (
    SQLiteStore,
    SQLitePersistence,
)
from MentorConnect.core.server.transport import (
    WebSocketConnection,
    WebSocketTransport,
)
from MentorConnect.core.server.websocket_manager import (
    RelayServer,
)

__all__ = [
    'Authenticator',
    'AuthResult',
    'Persistence',
    'Transport',
    'TransportConnection',
    'HookPhase',
    'HookContext',
    'HookFunction',
    'PluginAwareComponent',

    'RelayError',
    'ValidationError',
    'PersistenceError',
    'TransportError',

    'JWTAuthenticator',
    'DefaultTokenExtractor',

    'PresenceRegistry',

    'Connection',
    'ConnectionState',
    'ConnectionLifecycleManager',

    'MessageRelay',
    'DeliveryReport',

    'WebSocketConnection',
    'WebSocketTransport',

    'SQLiteStore',
    'SQLitePersistence',

    'RelayServer',
]
