"""
Repository layer for session storage.

Local sessions live in the key-value store; remote conversations in the
account-scoped conversation service.
"""

from spacesync.repositories.base import SessionBackend
from spacesync.repositories.local import LocalSessionRepository
from spacesync.repositories.remote import RemoteConversationRepository

__all__ = [
    "SessionBackend",
    "LocalSessionRepository",
    "RemoteConversationRepository",
]
