"""
Session backends: the local and remote repositories behind one interface.
"""

from datetime import datetime
from typing import Any, Optional

from spacesync.exceptions import SessionNotFoundError
from spacesync.identifiers import parse_local_id
from spacesync.models import (
    Conversation,
    LocalSession,
    Message,
    RemoteConversation,
    RemoteMessage,
    SessionSummary,
    StorageBackend,
    utc_now,
)
from spacesync.repositories.base import SessionBackend
from spacesync.repositories.local import LocalSessionRepository
from spacesync.repositories.remote import RemoteConversationRepository


def local_to_conversation(session: LocalSession) -> Conversation:
    extra = dict(session.model_extra or {})
    return Conversation(
        id=str(session.id),
        backend=StorageBackend.LOCAL,
        title=session.title,
        created_at=session.timestamp,
        updated_at=session.timestamp,
        messages=list(session.messages),
        metadata={**extra, **session.metadata},
    )


def remote_message_to_message(message: RemoteMessage) -> Message:
    metadata = message.metadata or {}
    timestamp = metadata.get("timestamp") or message.created_at
    return Message(
        type=message.type,
        content=message.content,
        timestamp=timestamp,
        tags=metadata.get("tags") or [],
        saved=True,
    )


def remote_to_conversation(conversation: RemoteConversation) -> Conversation:
    return Conversation(
        id=conversation.id,
        backend=StorageBackend.REMOTE,
        title=conversation.title,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        messages=[remote_message_to_message(m) for m in conversation.messages],
        metadata=dict(conversation.metadata),
    )


def message_metadata(message: Message) -> dict[str, Any]:
    """Metadata sent alongside a message to the conversation service."""
    metadata: dict[str, Any] = {"tags": list(message.tags)}
    if message.timestamp:
        metadata["timestamp"] = message.timestamp.isoformat()
    return metadata


class LocalBackend(SessionBackend):
    """Sessions in the local key-value store, keyed by small integers."""

    kind = StorageBackend.LOCAL

    def __init__(self, repository: LocalSessionRepository):
        self.repository = repository

    async def create_session(
        self, title: Optional[str] = None, metadata: Optional[dict[str, Any]] = None
    ) -> Conversation:
        # The stub reserves the id and holds title and metadata. It stays out
        # of listings and purge_empty removes it until a real turn lands.
        session = LocalSession(
            id=self.repository.next_id(),
            title=title,
            timestamp=utc_now(),
            metadata=dict(metadata or {}),
        )
        self.repository.save(session)
        return local_to_conversation(session)

    async def load_session(self, session_id: str) -> Conversation:
        return local_to_conversation(self.repository.load(parse_local_id(session_id)))

    def _load_or_new(self, local_id: int) -> LocalSession:
        try:
            return self.repository.load(local_id)
        except SessionNotFoundError:
            if self.repository.exists(local_id):
                # A record that is kept but unreadable is never overwritten
                raise
            return LocalSession(id=local_id, timestamp=utc_now())

    async def append_message(self, session_id: str, message: Message) -> Message:
        local_id = parse_local_id(session_id)
        session = self._load_or_new(local_id)
        saved = message.model_copy(update={"saved": True})
        session.messages.append(saved)
        session.timestamp = utc_now()
        self.repository.save(session)
        return saved

    async def update_session(
        self,
        session_id: str,
        title: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Conversation:
        session = self.repository.load(parse_local_id(session_id))
        if title is not None:
            session.title = title
        if metadata is not None:
            session.metadata = {**session.metadata, **metadata}
        self.repository.save(session)
        return local_to_conversation(session)

    async def list_sessions(self) -> list[SessionSummary]:
        return self.repository.summaries()

    async def delete_session(self, session_id: str) -> bool:
        return self.repository.delete(parse_local_id(session_id))


class RemoteBackend(SessionBackend):
    """Conversations held by the account-scoped conversation service."""

    kind = StorageBackend.REMOTE

    def __init__(self, repository: RemoteConversationRepository):
        self.repository = repository

    async def create_session(
        self, title: Optional[str] = None, metadata: Optional[dict[str, Any]] = None
    ) -> Conversation:
        conversation = await self.repository.create(title, metadata)
        return remote_to_conversation(conversation)

    async def load_session(self, session_id: str) -> Conversation:
        return remote_to_conversation(await self.repository.load(session_id))

    async def append_message(self, session_id: str, message: Message) -> Message:
        stored = await self.repository.append_message(
            session_id, message.type, message.content, message_metadata(message)
        )
        update: dict[str, Any] = {"saved": True}
        if message.timestamp is None and stored.created_at is not None:
            update["timestamp"] = stored.created_at
        return message.model_copy(update=update)

    async def update_session(
        self,
        session_id: str,
        title: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Conversation:
        fields: dict[str, Any] = {}
        if title is not None:
            fields["title"] = title
        if metadata is not None:
            fields["metadata"] = metadata
        return remote_to_conversation(await self.repository.update(session_id, fields))

    async def list_sessions(self) -> list[SessionSummary]:
        conversations = await self.repository.list()
        return [
            SessionSummary(
                id=c.id,
                backend=self.kind,
                title=c.title,
                timestamp=c.updated_at or c.created_at,
                message_count=int(c.model_extra.get("message_count", 0))
                if c.model_extra
                else 0,
            )
            for c in conversations
        ]

    async def delete_session(self, session_id: str) -> bool:
        try:
            await self.repository.delete(session_id)
        except SessionNotFoundError:
            return False
        return True


def summary_sort_key(summary: SessionSummary) -> datetime:
    if summary.timestamp is None:
        return datetime.min.replace(tzinfo=utc_now().tzinfo)
    if summary.timestamp.tzinfo is None:
        return summary.timestamp.replace(tzinfo=utc_now().tzinfo)
    return summary.timestamp
