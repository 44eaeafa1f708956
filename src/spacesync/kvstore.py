"""
Directory-backed key-value store shared by every context on the machine.

Each key is one file in the store directory. Writes are whole-value
replacements done via a temp file and an atomic rename, so a concurrent
reader sees either the old value or the new one, never a mix. Change
notifications for other contexts come from watching the directory
(see :mod:`spacesync.sync`).
"""

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import quote, unquote

from spacesync.exceptions import (
    MalformedRecordError,
    StorageQuotaExceededError,
    StorageWriteError,
)

logger = logging.getLogger(__name__)

VALUE_SUFFIX = ".kv"
TEMP_PREFIX = ".tmp-"

_MISSING = object()


def key_to_filename(key: str) -> str:
    """Encode a key as a safe file name."""
    return quote(key, safe="") + VALUE_SUFFIX


def filename_to_key(filename: str) -> Optional[str]:
    """Decode a store file name back to its key, or None for foreign files."""
    if filename.startswith(".") or not filename.endswith(VALUE_SUFFIX):
        return None
    return unquote(filename[: -len(VALUE_SUFFIX)])


class KeyValueStore:
    """
    Synchronous string key-value store on the local filesystem.

    Usage:
        store = KeyValueStore(Path("~/.local/share/spacesync/store"))
        store.set_item("space_max_tokens", "2048")
        store.get_item("space_max_tokens")  # "2048"

    Each instance represents one context (one "tab"). It remembers the last
    value it wrote for every key so the cross-context listener can tell its
    own writes apart from writes made elsewhere.
    """

    def __init__(self, directory: Path, quota_bytes: Optional[int] = None):
        """
        Initialize the store.

        Args:
            directory: Directory holding one file per key (created if missing)
            quota_bytes: Maximum total size of keys and values, or None for no limit
        """
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.quota_bytes = quota_bytes
        self._own_writes: dict[str, Optional[str]] = {}
        self._own_writes_lock = threading.Lock()

    def path_for(self, key: str) -> Path:
        return self.directory / key_to_filename(key)

    def get_item(self, key: str) -> Optional[str]:
        """
        Return the stored value for key, or None if absent.

        Raises:
            MalformedRecordError: If the stored bytes are not valid UTF-8
        """
        try:
            return self.path_for(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise MalformedRecordError(key, f"invalid UTF-8: {e.reason}") from e

    def contains(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def set_item(self, key: str, value: str) -> None:
        """
        Store value under key, replacing any previous value.

        Raises:
            StorageQuotaExceededError: If the write would exceed the quota
            StorageWriteError: If the value cannot be written
        """
        if not isinstance(value, str):
            raise StorageWriteError(key, f"value must be str, got {type(value).__name__}")

        if self.quota_bytes is not None:
            required = self._usage_without(key) + self._entry_size(key, value)
            if required > self.quota_bytes:
                raise StorageQuotaExceededError(key, required, self.quota_bytes)

        target = self.path_for(key)
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=TEMP_PREFIX, dir=self.directory, text=True
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                self._remember(key, value)
                os.replace(tmp_name, target)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            self._forget(key)
            raise StorageWriteError(key, str(e)) from e

        logger.debug(f"Wrote {key} ({len(value)} chars)")

    def remove_item(self, key: str) -> bool:
        """Remove key. Returns True if it existed."""
        self._remember(key, None)
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageWriteError(key, str(e)) from e
        logger.debug(f"Removed {key}")
        return True

    def keys(self, prefix: Optional[str] = None) -> list[str]:
        """List stored keys, optionally restricted to a prefix, sorted."""
        found = []
        for entry in os.scandir(self.directory):
            if not entry.is_file():
                continue
            key = filename_to_key(entry.name)
            if key is None:
                continue
            if prefix is None or key.startswith(prefix):
                found.append(key)
        return sorted(found)

    def items(self, prefix: Optional[str] = None) -> Iterator[tuple[str, str]]:
        """
        Yield (key, value) pairs. Keys deleted mid-iteration and values that
        are not valid UTF-8 are skipped.
        """
        for key in self.keys(prefix):
            try:
                value = self.get_item(key)
            except MalformedRecordError as e:
                logger.warning(f"Skipping {key}: {e.reason}")
                continue
            if value is not None:
                yield key, value

    def clear(self, prefix: Optional[str] = None) -> int:
        """Remove every key matching prefix. Returns the number removed."""
        removed = 0
        for key in self.keys(prefix):
            if self.remove_item(key):
                removed += 1
        return removed

    def usage_bytes(self) -> int:
        """Current total size of stored keys and values."""
        return self._usage_without(None)

    def is_own_write(self, key: str, value: Optional[str]) -> bool:
        """True if this instance's most recent write to key produced value."""
        with self._own_writes_lock:
            last = self._own_writes.get(key, _MISSING)
        return last is not _MISSING and last == value

    def _remember(self, key: str, value: Optional[str]) -> None:
        with self._own_writes_lock:
            self._own_writes[key] = value

    def _forget(self, key: str) -> None:
        with self._own_writes_lock:
            self._own_writes.pop(key, None)

    @staticmethod
    def _entry_size(key: str, value: str) -> int:
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))

    def _usage_without(self, excluded_key: Optional[str]) -> int:
        total = 0
        for entry in os.scandir(self.directory):
            key = filename_to_key(entry.name)
            if key is None or key == excluded_key:
                continue
            try:
                total += len(key.encode("utf-8")) + entry.stat().st_size
            except FileNotFoundError:
                continue
        return total
