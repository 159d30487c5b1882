"""
Contracts between the realtime core and its collaborators.

The core only talks to persistence and to the transport through the
protocols below, so tests can substitute fakes and deployments can swap
the SQLite store or the websocket transport.

Also provides the hook registry used to observe lifecycle transitions.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from MentorConnect.core.message.protocol import ChatMessage

logger = logging.getLogger(__name__)


class HookPhase(Enum):
    """Points in the connection and message lifecycle where hooks run."""
    POST_OPEN = auto()
    POST_IDENTIFY = auto()
    POST_CLOSE = auto()
    PRESENCE_CHANGED = auto()
    POST_SEND = auto()
    SIDE_EFFECT_FAILED = auto()


@dataclass
class HookContext:
    """Context passed to hook functions."""
    phase: HookPhase
    user_id: Optional[str] = None
    connection_id: Optional[str] = None
    message: Optional[Any] = None
    error: Optional[BaseException] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.metadata.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.metadata[key] = value


HookFunction = Callable[[HookContext], Optional[HookContext]]


@dataclass
class AuthResult:
    """Result of an authentication attempt."""
    success: bool
    user_id: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None


@runtime_checkable
class Persistence(Protocol):
    """
    Durable store used by the core.

    Every method may suspend; failures surface as PersistenceError.
    """

    @abstractmethod
    async def save_message(self, message: 'ChatMessage') -> 'ChatMessage':
        """
        Store a chat message.

        Args:
            message: Message to store (``id`` is None)

        Returns:
            The stored message with its ``id`` assigned
        """
        ...

    @abstractmethod
    async def set_user_online_status(
        self,
        user_id: str,
        is_online: bool,
        last_active: float
    ) -> None:
        """Record a user's online flag and last-active timestamp."""
        ...

    @abstractmethod
    async def get_history(
        self,
        user_id: str,
        other_id: str,
        limit: int = 50
    ) -> List['ChatMessage']:
        """Most recent ``limit`` messages between two users, oldest first."""
        ...

    @abstractmethod
    async def list_chats(self, user_id: str) -> List[Dict[str, Any]]:
        """One summary per conversation partner, most recent first."""
        ...

    @abstractmethod
    async def mark_read(self, reader_id: str, other_id: str) -> int:
        """Flag messages from ``other_id`` to ``reader_id`` as read. Returns the count."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Best-effort push channel to live connections."""

    @abstractmethod
    async def send(self, connection_id: str, event: str, payload: Dict[str, Any]) -> bool:
        """
        Push one event to one live connection.

        Returns:
            True if the frame was handed to the connection
        """
        ...

    @abstractmethod
    async def broadcast_all(self, event: str, payload: Dict[str, Any]) -> int:
        """
        Push one event to every live connection.

        Returns:
            Number of connections reached
        """
        ...


@runtime_checkable
class TransportConnection(Protocol):
    """A single live client link."""

    @abstractmethod
    async def send(self, message: str) -> bool:
        ...

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...

    @abstractmethod
    def is_open(self) -> bool:
        ...


@runtime_checkable
class Authenticator(Protocol):
    """Resolves a signed token to a user id."""

    @abstractmethod
    async def authenticate(self, token: str) -> AuthResult:
        ...

    @abstractmethod
    def extract_token(self, transport_context: object) -> Optional[str]:
        ...


class PluginAwareComponent(ABC):
    """Base class for components that run registered hooks."""

    def __init__(self):
        self._hooks: Dict[HookPhase, List[tuple[int, HookFunction]]] = {}

    def register_hook(
        self,
        phase: HookPhase,
        hook: HookFunction,
        priority: int = 100
    ) -> None:
        """
        Register a hook for a phase.

        Args:
            phase: Phase to hook into
            hook: Hook function
            priority: Lower numbers run first
        """
        hooks = self._hooks.setdefault(phase, [])
        hooks.append((priority, hook))
        hooks.sort(key=lambda item: item[0])

    def unregister_hook(self, phase: HookPhase, hook: HookFunction) -> bool:
        """Remove a hook. Returns True if it was registered."""
        for i, (_, registered) in enumerate(self._hooks.get(phase, [])):
            if registered == hook:
                self._hooks[phase].pop(i)
                return True
        return False

    def _execute_hooks(self, phase: HookPhase, context: HookContext) -> HookContext:
        """
        Run the hooks for ``phase`` in priority order.

        A failing hook is logged and skipped; the remaining hooks still run.
        """
        result_context = context
        for _, hook in self._hooks.get(phase, []):
            try:
                modified = hook(result_context)
                if modified is not None:
                    result_context = modified
            except Exception:
                logger.exception("Hook %r failed in phase %s", hook, phase.name)
        return result_context


__all__ = [
    'HookPhase',
    'HookContext',
    'HookFunction',
    'AuthResult',
    'Persistence',
    'Transport',
    'TransportConnection',
    'Authenticator',
    'PluginAwareComponent',
]
