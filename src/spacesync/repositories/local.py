"""
Local session repository.

Sessions live in the key-value store under ``<prefix>session_<id>`` as JSON.
This repository reads and writes them; it never decides whether a session
*should* be local (that is the conversation store's job).
"""

import json
import logging
from typing import Iterator, List, Optional

from pydantic import ValidationError

from spacesync.exceptions import (
    MalformedRecordError,
    RecordSchemaError,
    SessionNotFoundError,
    StorageWriteError,
)
from spacesync.keys import StoreKeys
from spacesync.kvstore import KeyValueStore
from spacesync.models import LocalSession, SessionSummary, StorageBackend

logger = logging.getLogger(__name__)


class LocalSessionRepository:
    """CRUD over session records in the local key-value store."""

    def __init__(self, store: KeyValueStore, keys: Optional[StoreKeys] = None):
        self.store = store
        self.keys = keys or StoreKeys()

    def parse_record(self, key: str, raw: str) -> LocalSession:
        """
        Parse the stored value of a session key.

        Raises:
            MalformedRecordError: If the value is not a JSON object
            RecordSchemaError: If it is an object that is not a session
        """
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedRecordError(key, f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise MalformedRecordError(key, "record is not an object")
        try:
            session = LocalSession.model_validate(data)
        except ValidationError as e:
            raise RecordSchemaError(key, str(e)) from e
        if self.keys.session(session.id) != key:
            raise RecordSchemaError(key, f"record id {session.id} does not match key")
        return session

    def _read(self, key: str) -> Optional[LocalSession]:
        """
        Read one record. Unparseable values are deleted; values that parse
        but do not look like a session are logged and left alone.

        Raises:
            MalformedRecordError: After deleting an unparseable record
            RecordSchemaError: For a record that was kept
        """
        try:
            raw = self.store.get_item(key)
            if raw is None:
                return None
            return self.parse_record(key, raw)
        except RecordSchemaError as e:
            logger.warning(f"Skipping unreadable session record (kept): {e}")
            raise
        except MalformedRecordError as e:
            logger.warning(f"Removing corrupt session record: {e}")
            self.store.remove_item(key)
            raise

    def iter_sessions(self, include_empty: bool = False) -> Iterator[LocalSession]:
        """
        Yield every parseable session record.

        Corrupt records are deleted as they are encountered. Sessions without
        any non-system message are skipped unless include_empty is set.
        """
        for key in self.store.keys(self.keys.session_prefix):
            if self.keys.parse_session_key(key) is None:
                continue
            try:
                session = self._read(key)
            except MalformedRecordError:
                continue
            if session is not None and (include_empty or session.is_durable):
                yield session

    def list(self) -> List[LocalSession]:
        """Durable sessions, most recent activity first."""
        return sorted(
            self.iter_sessions(), key=lambda s: s.last_activity, reverse=True
        )

    def summaries(self) -> List[SessionSummary]:
        return [
            SessionSummary(
                id=str(session.id),
                backend=StorageBackend.LOCAL,
                title=session.title,
                timestamp=session.last_activity,
                message_count=len(session.non_system_messages),
            )
            for session in self.list()
        ]

    def load(self, session_id: int) -> LocalSession:
        """
        Load a session by id.

        Raises:
            SessionNotFoundError: If no readable record exists (a corrupt
                record is removed and reported as missing)
        """
        try:
            session = self._read(self.keys.session(session_id))
        except MalformedRecordError as e:
            raise SessionNotFoundError(session_id) from e
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def exists(self, session_id: int) -> bool:
        return self.store.contains(self.keys.session(session_id))

    def save(self, session: LocalSession) -> None:
        """
        Insert or replace a session record.

        Raises:
            StorageWriteError: If the record cannot be serialized or written
                (StorageQuotaExceededError when the store is full)
        """
        key = self.keys.session(session.id)
        try:
            payload = session.model_dump_json()
        except (TypeError, ValueError) as e:
            raise StorageWriteError(key, f"serialization failed: {e}") from e
        self.store.set_item(key, payload)
        logger.debug(f"Saved local session {session.id} ({len(session.messages)} messages)")

    def delete(self, session_id: int) -> bool:
        """Delete a session. Returns True if it existed."""
        deleted = self.store.remove_item(self.keys.session(session_id))
        if deleted:
            logger.info(f"Deleted local session {session_id}")
        return deleted

    def next_id(self) -> int:
        """One more than the largest local id in use, or 1 for an empty store."""
        ids = [
            session_id
            for key in self.store.keys(self.keys.session_prefix)
            if (session_id := self.keys.parse_session_key(key)) is not None
        ]
        return max(ids) + 1 if ids else 1

    def purge_empty(self) -> int:
        """Delete sessions that hold no non-system message. Returns count removed."""
        removed = 0
        for session in list(self.iter_sessions(include_empty=True)):
            if not session.is_durable and self.delete(session.id):
                removed += 1
        if removed:
            logger.info(f"Purged {removed} empty local session(s)")
        return removed

    def delete_many(self, session_ids: List[int]) -> List[int]:
        """Delete the given sessions; returns the ids actually removed."""
        removed = []
        for session_id in session_ids:
            if self.delete(session_id):
                removed.append(session_id)
        return removed

    def delete_all(self) -> int:
        """Delete every session record. Destructive; explicit user action only."""
        removed = self.store.clear(self.keys.session_prefix)
        logger.warning(f"Deleted all {removed} local session record(s)")
        return removed
