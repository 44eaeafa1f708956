"""
Conversation store: the single entry point for reading and writing sessions.

Every call asks the identifier resolver which backend is responsible and
delegates to exactly one of them. Nothing here migrates data between
backends; that is :mod:`spacesync.migration`'s job.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from spacesync.auth import AuthState
from spacesync.backends import LocalBackend, RemoteBackend, summary_sort_key
from spacesync.config import Settings, settings
from spacesync.exceptions import (
    AuthenticationRequiredError,
    MalformedRecordError,
    SpaceSyncError,
)
from spacesync.identifiers import SessionId, SessionIdentifierResolver
from spacesync.keys import StoreKeys
from spacesync.kvstore import KeyValueStore
from spacesync.models import Conversation, Message, SessionSummary, StorageBackend
from spacesync.repositories.base import SessionBackend
from spacesync.repositories.local import LocalSessionRepository
from spacesync.repositories.remote import RemoteConversationRepository
from spacesync.retry import RetryConfig

logger = logging.getLogger(__name__)


@dataclass
class DeletionReport:
    """Outcome of deleting several sessions."""

    deleted: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ConversationStore:
    """
    Backend-agnostic session operations.

    Usage:
        store = ConversationStore(local, remote, resolver)
        conversation = await store.create_session()
        await store.save_turn(conversation.id, Message(type="user", content="Hi"))
    """

    def __init__(
        self,
        local: LocalSessionRepository,
        remote: Optional[RemoteConversationRepository],
        resolver: SessionIdentifierResolver,
    ):
        self.local_repository = local
        self.remote_repository = remote
        self.resolver = resolver
        self._local = LocalBackend(local)
        self._remote = RemoteBackend(remote) if remote is not None else None

    @property
    def kvstore(self) -> KeyValueStore:
        return self.local_repository.store

    @property
    def keys(self) -> StoreKeys:
        return self.local_repository.keys

    def _backend(self, kind: StorageBackend) -> SessionBackend:
        if kind == StorageBackend.LOCAL:
            return self._local
        if self._remote is None:
            raise AuthenticationRequiredError("Remote conversation service is not configured")
        return self._remote

    def backend_for(self, session_id: SessionId) -> SessionBackend:
        """The backend that owns session_id. Invalid ids raise InvalidSessionIdError."""
        return self._backend(self.resolver.classify(session_id))

    async def create_session(
        self, title: Optional[str] = None, metadata: Optional[dict[str, Any]] = None
    ) -> Conversation:
        """Start a session in the backend chosen by the current auth state."""
        backend = self._backend(self.resolver.backend_for_new_session())
        conversation = await backend.create_session(title, metadata)
        logger.debug(f"Created {backend.kind.value} session {conversation.id}")
        return conversation

    async def load_session(self, session_id: SessionId) -> Conversation:
        """
        Load a session from the backend its identifier belongs to.

        A local id is always served from the local store, signed in or not.

        Raises:
            SessionNotFoundError: If the id is malformed or has no record
            AuthenticationRequiredError: For a remote id without a credential
        """
        return await self.backend_for(session_id).load_session(str(session_id))

    async def save_turn(self, session_id: SessionId, message: Message) -> Message:
        """Append one message to one backend. Returns the message marked saved."""
        return await self.backend_for(session_id).append_message(str(session_id), message)

    async def persist_messages(
        self, session_id: SessionId, messages: Iterable[Message]
    ) -> list[Message]:
        """
        Write the messages not yet marked saved, in order.

        Returns the full list with every message marked saved. Stops at the
        first failure so a later message is never stored ahead of an earlier
        one.
        """
        backend = self.backend_for(session_id)
        persisted = []
        written = 0
        for message in messages:
            if message.saved:
                persisted.append(message)
                continue
            persisted.append(await backend.append_message(str(session_id), message))
            written += 1
        if written:
            logger.debug(f"Persisted {written} new message(s) to session {session_id}")
        return persisted

    async def update_session(
        self,
        session_id: SessionId,
        title: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Conversation:
        return await self.backend_for(session_id).update_session(
            str(session_id), title=title, metadata=metadata
        )

    async def list_sessions(self) -> list[SessionSummary]:
        """
        Sessions visible to the current user, most recent first.

        Signed-in users see their remote conversations together with any
        local sessions not yet migrated; anonymous users see local sessions
        only.
        """
        summaries = await self._local.list_sessions()
        if self.resolver.is_authenticated and self._remote is not None:
            summaries = summaries + await self._remote.list_sessions()
        return sorted(summaries, key=summary_sort_key, reverse=True)

    async def delete_session(self, session_id: SessionId) -> bool:
        """Delete one session. Returns False if it did not exist."""
        deleted = await self.backend_for(session_id).delete_session(str(session_id))
        if deleted and self.current_session_id() == str(session_id):
            self.clear_current_session()
        return deleted

    async def delete_sessions(self, session_ids: Iterable[SessionId]) -> DeletionReport:
        """
        Delete several sessions.

        A failure on one id is recorded and does not undo or block the others.
        """
        report = DeletionReport()
        for session_id in session_ids:
            key = str(session_id)
            try:
                if await self.delete_session(session_id):
                    report.deleted.append(key)
                else:
                    report.missing.append(key)
            except SpaceSyncError as e:
                logger.error(f"Failed to delete session {key}: {e}")
                report.failed[key] = str(e)
        return report

    def set_current_session(self, session_id: SessionId) -> None:
        """Remember the open session. Only one of the two pointer keys is ever set."""
        if self.resolver.classify(session_id) == StorageBackend.REMOTE:
            self.kvstore.set_item(self.keys.current_conversation, str(session_id))
            self.kvstore.remove_item(self.keys.current_session)
        else:
            self.kvstore.set_item(self.keys.current_session, str(session_id))
            self.kvstore.remove_item(self.keys.current_conversation)

    def current_session_id(self) -> Optional[str]:
        for key in (self.keys.current_conversation, self.keys.current_session):
            try:
                value = self.kvstore.get_item(key)
            except MalformedRecordError as e:
                logger.warning(f"Ignoring undecodable {key}: {e.reason}")
                continue
            if value:
                return value.strip()
        return None

    def clear_current_session(self) -> None:
        self.kvstore.remove_item(self.keys.current_session)
        self.kvstore.remove_item(self.keys.current_conversation)

    def reset_local_sessions(self) -> int:
        """Delete every local session record. Explicit user action only."""
        removed = self.local_repository.delete_all()
        self.kvstore.remove_item(self.keys.current_session)
        return removed

    def purge_empty_sessions(self) -> int:
        return self.local_repository.purge_empty()


def create_store(
    auth: AuthState,
    config: Optional[Settings] = None,
    transport: Optional[Any] = None,
) -> ConversationStore:
    """Wire a ConversationStore from settings."""
    config = config or settings
    kvstore = KeyValueStore(config.store_directory, quota_bytes=config.storage_quota_bytes)
    local = LocalSessionRepository(kvstore, StoreKeys(config.key_prefix))
    remote = RemoteConversationRepository(
        config.api_base_url,
        auth,
        timeout=config.api_timeout,
        retry_config=RetryConfig(max_retries=config.api_max_retries),
        transport=transport,
    )
    resolver = SessionIdentifierResolver(lambda: auth.is_authenticated)
    return ConversationStore(local, remote, resolver)
