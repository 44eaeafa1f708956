"""Common interface implemented by the local and remote session backends."""

from abc import ABC, abstractmethod
from typing import Any, Optional

from spacesync.models import Conversation, Message, SessionSummary, StorageBackend


class SessionBackend(ABC):
    """
    One place sessions can live.

    The conversation store picks an implementation per call; implementations
    never decide for themselves whether a session belongs to them.
    """

    kind: StorageBackend

    @abstractmethod
    async def create_session(
        self, title: Optional[str] = None, metadata: Optional[dict[str, Any]] = None
    ) -> Conversation:
        """Start a new, empty session."""

    @abstractmethod
    async def load_session(self, session_id: str) -> Conversation:
        """Load a session with its messages, or raise SessionNotFoundError."""

    @abstractmethod
    async def append_message(self, session_id: str, message: Message) -> Message:
        """Persist one message at the end of a session and return it marked saved."""

    @abstractmethod
    async def update_session(
        self,
        session_id: str,
        title: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Conversation:
        """Change a session's title and/or metadata."""

    @abstractmethod
    async def list_sessions(self) -> list[SessionSummary]:
        """Sessions in this backend, most recent first."""

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete a session. Returns False if it did not exist."""
