"""
Cross-context change propagation for the local key-value store.

Every context (process) opens its own :class:`~spacesync.kvstore.KeyValueStore`
on the shared directory. :class:`CrossContextSyncListener` watches that
directory with watchdog and, when a key some component subscribed to is
changed by *another* context, re-reads and re-parses the value and hands it
to the subscriber, which replaces its in-memory state wholesale.
"""

import json
import logging
import platform
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers.polling import PollingObserver

# Use PollingObserver on macOS to avoid fsevents C extension crashes
if platform.system() == "Darwin":  # macOS
    from watchdog.observers.polling import PollingObserver as Observer
else:
    from watchdog.observers import Observer

from spacesync.exceptions import MalformedRecordError
from spacesync.kvstore import KeyValueStore, filename_to_key

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Any], None]
ValueParser = Callable[[str], Any]

_UNSET = object()
_UNREADABLE = object()


@dataclass
class Subscription:
    """Handle returned by :meth:`CrossContextSyncListener.subscribe`."""

    key: str
    callback: ChangeCallback
    parser: Optional[ValueParser]
    listener: "CrossContextSyncListener"
    active: bool = True

    def unsubscribe(self) -> None:
        if self.active:
            self.listener._remove(self)
            self.active = False


class _StoreEventHandler(FileSystemEventHandler):
    """Translates file events in the store directory into key changes."""

    def __init__(self, listener: "CrossContextSyncListener"):
        super().__init__()
        self.listener = listener

    def _dispatch_path(self, path: Any) -> None:
        key = filename_to_key(Path(str(path)).name)
        if key is not None:
            self.listener.handle_change(key)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._dispatch_path(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._dispatch_path(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._dispatch_path(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic writes land as a rename of a temp file onto the key's file
        if not event.is_directory:
            self._dispatch_path(event.dest_path)


class CrossContextSyncListener:
    """
    Observer of changes made to the shared store by other contexts.

    Usage:
        listener = CrossContextSyncListener(store)
        sub = listener.subscribe(keys.advisors, roster.hydrate)
        listener.start()
        ...
        sub.unsubscribe()
        listener.stop()

    Values this context wrote itself are never delivered back to it, and a
    value that was already delivered for a key is not delivered again.
    Subscribers receive ``None`` when the key is removed.
    """

    def __init__(
        self,
        store: KeyValueStore,
        use_polling: bool = False,
        poll_interval: float = 1.0,
    ):
        self.store = store
        self.use_polling = use_polling
        self.poll_interval = poll_interval
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._last_seen: dict[str, Any] = {}
        self._lock = threading.Lock()
        self._observer: Optional[Any] = None

    def subscribe(
        self,
        key: str,
        callback: ChangeCallback,
        parser: Optional[ValueParser] = json.loads,
    ) -> Subscription:
        """
        Register callback for changes to key.

        Args:
            key: Store key to watch
            callback: Receives the parsed new value, or None on removal
            parser: Turns the raw stored string into a value; None passes the
                raw string through
        """
        subscription = Subscription(key=key, callback=callback, parser=parser, listener=self)
        with self._lock:
            self._subscriptions.setdefault(key, []).append(subscription)
            self._last_seen.setdefault(key, self._read(key))
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(subscription.key, [])
            if subscription in subs:
                subs.remove(subscription)
            if not subs:
                self._subscriptions.pop(subscription.key, None)
                self._last_seen.pop(subscription.key, None)

    @property
    def watched_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._subscriptions)

    def handle_change(self, key: str) -> int:
        """
        Deliver the current value of key to its subscribers.

        Returns the number of callbacks invoked.
        """
        with self._lock:
            subscriptions = list(self._subscriptions.get(key, []))
            if not subscriptions:
                return 0
            value = self._read(key)
            if self._last_seen.get(key, _UNSET) == value:
                return 0
            self._last_seen[key] = value
        if value is _UNREADABLE:
            return 0

        if self.store.is_own_write(key, value):
            logger.debug(f"Ignoring own write to {key}")
            return 0

        delivered = 0
        for subscription in subscriptions:
            try:
                parsed = self._parse(subscription, value)
            except ValueError as e:
                logger.warning(f"Ignoring unparseable value for {key}: {e}")
                continue
            try:
                subscription.callback(parsed)
                delivered += 1
            except Exception as e:
                logger.error(f"Subscriber for {key} failed: {e}", exc_info=True)
        if delivered:
            logger.debug(f"Delivered change of {key} to {delivered} subscriber(s)")
        return delivered

    def _read(self, key: str) -> Any:
        try:
            return self.store.get_item(key)
        except MalformedRecordError as e:
            logger.warning(f"Ignoring undecodable value for {key}: {e.reason}")
            return _UNREADABLE

    @staticmethod
    def _parse(subscription: Subscription, value: Optional[str]) -> Any:
        if value is None or subscription.parser is None:
            return value
        return subscription.parser(value)

    def start(self) -> None:
        """Start watching the store directory in a background thread."""
        if self._observer is not None:
            return
        if self.use_polling:
            observer = PollingObserver(timeout=self.poll_interval)
        else:
            observer = Observer()
        observer.schedule(_StoreEventHandler(self), str(self.store.directory), recursive=False)
        observer.start()
        self._observer = observer
        logger.info(f"Watching {self.store.directory} for changes")

    def stop(self) -> None:
        if self._observer is None:
            return
        try:
            self._observer.stop()
            self._observer.join(timeout=3)
            if self._observer.is_alive():
                logger.warning("Observer thread did not stop cleanly")
        except Exception as e:
            logger.error(f"Error stopping observer: {e}", exc_info=True)
        finally:
            self._observer = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def __enter__(self) -> "CrossContextSyncListener":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()
