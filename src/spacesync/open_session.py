"""
Live mirror of the local session that is open in this context.

When another context appends to or deletes the open session, the mirror
re-reads the record and replaces its copy wholesale.
"""

import logging
import threading
from functools import partial
from typing import Any, Callable, Optional

from spacesync.exceptions import SessionNotFoundError
from spacesync.models import LocalSession
from spacesync.repositories.local import LocalSessionRepository
from spacesync.sync import CrossContextSyncListener, Subscription

logger = logging.getLogger(__name__)

SessionCallback = Callable[[Optional[LocalSession]], None]


class OpenSessionMirror:
    """
    Keeps an in-memory copy of one local session in step with the store.

    Usage:
        mirror = OpenSessionMirror(repository, listener, on_change=render)
        mirror.open(3)
        ...
        mirror.open(4)  # stops following session 3
        mirror.close()

    ``session`` is None when the open session has no readable record, for
    example after another context deleted it.
    """

    def __init__(
        self,
        repository: LocalSessionRepository,
        listener: CrossContextSyncListener,
        on_change: Optional[SessionCallback] = None,
    ):
        self.repository = repository
        self.listener = listener
        self.on_change = on_change
        self.session_id: Optional[int] = None
        self._session: Optional[LocalSession] = None
        self._subscription: Optional[Subscription] = None
        self._lock = threading.Lock()

    @property
    def session(self) -> Optional[LocalSession]:
        with self._lock:
            return self._session

    def open(self, session_id: int) -> Optional[LocalSession]:
        """Follow session_id instead of the previously open session."""
        self.close()
        key = self.repository.keys.session(session_id)
        try:
            session: Optional[LocalSession] = self.repository.load(session_id)
        except SessionNotFoundError:
            session = None
        with self._lock:
            self.session_id = session_id
            self._session = session
        self._subscription = self.listener.subscribe(
            key, self.hydrate, parser=partial(self.repository.parse_record, key)
        )
        logger.debug(f"Following local session {session_id}")
        return session

    def hydrate(self, value: Optional[LocalSession]) -> None:
        """Replace the mirrored session with a value written elsewhere."""
        with self._lock:
            self._session = value
        if value is None:
            logger.info(f"Open session {self.session_id} was removed by another context")
        else:
            logger.debug(
                f"Open session {value.id} changed elsewhere ({len(value.messages)} messages)"
            )
        if self.on_change is not None:
            self.on_change(value)

    def close(self) -> None:
        """Stop following the open session."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        with self._lock:
            self.session_id = None
            self._session = None

    def __enter__(self) -> "OpenSessionMirror":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
