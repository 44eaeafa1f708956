"""
Session identifier resolution.

The shape of an identifier is the only thing that says where a session lives:
canonical UUIDs belong to the remote conversation service, bare non-negative
integers to the local store. Anything else is not a session.
"""

import re
from typing import Callable, Union

from spacesync.exceptions import InvalidSessionIdError
from spacesync.models import StorageBackend

UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)
LOCAL_ID_PATTERN = re.compile(r"[0-9]+")

SessionId = Union[str, int]


def is_remote_id(raw: SessionId) -> bool:
    return isinstance(raw, str) and UUID_PATTERN.fullmatch(raw) is not None


def is_local_id(raw: SessionId) -> bool:
    if isinstance(raw, bool):
        return False
    if isinstance(raw, int):
        return raw >= 0
    return isinstance(raw, str) and LOCAL_ID_PATTERN.fullmatch(raw) is not None


def classify_session_id(raw: SessionId) -> StorageBackend:
    """
    Classify an identifier by shape.

    Raises:
        InvalidSessionIdError: If raw is neither UUID- nor integer-shaped
    """
    if is_remote_id(raw):
        return StorageBackend.REMOTE
    if is_local_id(raw):
        return StorageBackend.LOCAL
    raise InvalidSessionIdError(raw)


def parse_local_id(raw: SessionId) -> int:
    """Return the integer form of a local identifier."""
    if not is_local_id(raw):
        raise InvalidSessionIdError(raw)
    return int(raw)


def backend_for_new_session(is_authenticated: bool) -> StorageBackend:
    return StorageBackend.REMOTE if is_authenticated else StorageBackend.LOCAL


class SessionIdentifierResolver:
    """
    Decides which backend a session belongs to.

    Authentication state is read through a callable on every decision, so a
    client that signs in mid-session starts creating remote sessions without
    any cached flag having to be refreshed.
    """

    def __init__(self, is_authenticated: Callable[[], bool]):
        self._is_authenticated = is_authenticated

    def classify(self, raw: SessionId) -> StorageBackend:
        return classify_session_id(raw)

    def backend_for_new_session(self) -> StorageBackend:
        return backend_for_new_session(self._is_authenticated())

    @property
    def is_authenticated(self) -> bool:
        return self._is_authenticated()
