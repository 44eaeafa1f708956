"""
Debounced persistence for mutable collections.

Rapid successive mutations of the same collection are coalesced into a single
delayed write of the latest snapshot.
"""

import json
import logging
import threading
from typing import Any, Callable, Optional

from spacesync.exceptions import StorageWriteError
from spacesync.kvstore import KeyValueStore

logger = logging.getLogger(__name__)

Serializer = Callable[[Any], str]


def is_empty_collection(value: Any) -> bool:
    return value is None or (isinstance(value, (list, tuple, dict, set)) and not value)


class DebouncedPersistenceScheduler:
    """
    Per-key debounced writer.

    Each call to :meth:`schedule` replaces the pending snapshot for the key and
    restarts its timer. The snapshot is written only once the timer runs out
    without another mutation, so a burst of K mutations inside one window
    produces exactly one write holding the state after the K-th.

    An empty collection is persisted by removing the key.

    Usage:
        with DebouncedPersistenceScheduler(store, delay=0.5) as scheduler:
            scheduler.schedule(keys.advisors, advisors)
        # Pending writes are flushed on exit
    """

    def __init__(
        self,
        store: KeyValueStore,
        delay: float = 0.5,
        serializer: Serializer = json.dumps,
    ):
        """
        Initialize the scheduler.

        Args:
            store: Store the snapshots are written to
            delay: Coalescing window in seconds
            serializer: Turns a snapshot into the stored string
        """
        self.store = store
        self.delay = delay
        self.serializer = serializer

        self._pending: dict[str, Any] = {}
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._closed = False
        self.writes = 0
        self.last_error: Optional[Exception] = None

    def __enter__(self) -> "DebouncedPersistenceScheduler":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def schedule(self, key: str, snapshot: Any) -> None:
        """Record the latest snapshot for key and restart its timer."""
        with self._lock:
            if self._closed:
                raise RuntimeError("Scheduler is closed")
            self._pending[key] = snapshot
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
            timer = threading.Timer(self.delay, self._timer_flush, args=(key,))
            timer.daemon = True
            self._timers[key] = timer
            timer.start()

    def _timer_flush(self, key: str) -> None:
        """Called by a key's timer once its window has elapsed."""
        with self._lock:
            if self._timers.get(key) is not threading.current_thread():
                return
            self._timers.pop(key, None)
            try:
                self._write_locked(key)
            except StorageWriteError as e:
                # Snapshot stays pending; flush() retries and raises
                self.last_error = e
                logger.error(f"Debounced write of {key} failed: {e}")

    def _write_locked(self, key: str) -> None:
        """Write the pending snapshot for key (must be called with lock held)."""
        if key not in self._pending:
            return
        snapshot = self._pending[key]
        if is_empty_collection(snapshot):
            self.store.remove_item(key)
        else:
            try:
                value = self.serializer(snapshot)
            except (TypeError, ValueError) as e:
                raise StorageWriteError(key, f"serialization failed: {e}") from e
            self.store.set_item(key, value)
        del self._pending[key]
        self.writes += 1
        logger.debug(f"Persisted {key}")

    def flush(self, key: Optional[str] = None) -> None:
        """
        Write pending snapshots now instead of waiting for their timers.

        Raises:
            StorageWriteError: If a snapshot cannot be written
        """
        with self._lock:
            targets = [key] if key is not None else list(self._pending)
            for target in targets:
                timer = self._timers.pop(target, None)
                if timer is not None:
                    timer.cancel()
                self._write_locked(target)

    def cancel(self, key: str) -> None:
        """Drop a pending snapshot without writing it."""
        with self._lock:
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
            self._pending.pop(key, None)

    def close(self) -> None:
        """Flush remaining snapshots and refuse further scheduling."""
        try:
            self.flush()
        finally:
            with self._lock:
                self._closed = True

    def is_pending(self, key: str) -> bool:
        with self._lock:
            return key in self._pending

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)
