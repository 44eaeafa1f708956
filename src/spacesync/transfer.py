"""Export and import of every namespaced key, for moving data between machines."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Union

from spacesync.exceptions import SpaceSyncError, StorageWriteError
from spacesync.keys import StoreKeys
from spacesync.kvstore import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    overwritten: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


def export_data(store: KeyValueStore, keys: StoreKeys = StoreKeys()) -> dict[str, str]:
    """Every key under the namespace prefix, mapped to its raw stored string."""
    exported = dict(store.items(keys.prefix))
    logger.info(f"Exported {len(exported)} key(s)")
    return exported


def import_data(
    store: KeyValueStore,
    data: Union[str, dict[str, Any]],
    keys: StoreKeys = StoreKeys(),
) -> ImportResult:
    """
    Write an exported mapping back into the store.

    Existing keys are overwritten. Keys outside the namespace, and keys that
    cannot be written, are counted as skipped.

    Raises:
        SpaceSyncError: If data is not a JSON object
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise SpaceSyncError(f"Invalid JSON data: {e}") from e
    if not isinstance(data, dict):
        raise SpaceSyncError("Import data must be an object")

    result = ImportResult()
    for key, value in data.items():
        if not key.startswith(keys.prefix):
            logger.info(f"Skipped key outside namespace: {key}")
            result.skipped += 1
            continue

        raw = value if isinstance(value, str) else json.dumps(value)
        existed = store.contains(key)
        try:
            store.set_item(key, raw)
        except StorageWriteError as e:
            logger.error(f"Failed to import {key}: {e}")
            result.errors[key] = str(e)
            result.skipped += 1
            continue
        if existed:
            result.overwritten.append(key)
        result.imported += 1

    logger.info(f"Imported {result.imported} key(s), skipped {result.skipped}")
    return result
