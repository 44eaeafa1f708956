"""
SpaceSync - conversation persistence across local and remote storage.

Usage:
    from spacesync import AuthState, ConversationStore, Message, create_store

    store = create_store(AuthState("https://space.example.com"))

    # Anonymous users get local sessions, signed-in users remote ones
    conversation = await store.create_session()
    await store.save_turn(conversation.id, Message(type="user", content="Hello"))

    # Move local history into the account, once
    orchestrator = MigrationOrchestrator(store.local_repository, store.remote_repository)
    if orchestrator.discover() == MigrationStep.CONFIRM:
        orchestrator.confirm()
        report = await orchestrator.run()
"""

from spacesync.auth import AuthState, CredentialStore, StaticAuthState
from spacesync.identifiers import SessionIdentifierResolver
from spacesync.kvstore import KeyValueStore
from spacesync.migration import MigrationOrchestrator, MigrationStep
from spacesync.models import (
    Conversation,
    LocalSession,
    Message,
    MessageType,
    MigrationRecord,
    MigrationReport,
    SessionSummary,
    StorageBackend,
)
from spacesync.open_session import OpenSessionMirror
from spacesync.preferences import AdvisorGroups, AdvisorRoster, AppPreferences
from spacesync.repositories import LocalSessionRepository, RemoteConversationRepository
from spacesync.retry import RetryConfig
from spacesync.scheduler import DebouncedPersistenceScheduler
from spacesync.store import ConversationStore, create_store
from spacesync.sync import CrossContextSyncListener

__version__ = "0.1.0"

__all__ = [
    # Facade
    "ConversationStore",
    "create_store",
    "SessionIdentifierResolver",
    # Repositories
    "KeyValueStore",
    "LocalSessionRepository",
    "RemoteConversationRepository",
    # Migration
    "MigrationOrchestrator",
    "MigrationStep",
    # Sync and persistence
    "CrossContextSyncListener",
    "OpenSessionMirror",
    "DebouncedPersistenceScheduler",
    "AdvisorRoster",
    "AdvisorGroups",
    "AppPreferences",
    # Auth
    "AuthState",
    "StaticAuthState",
    "CredentialStore",
    # Configuration
    "RetryConfig",
    # Models
    "Conversation",
    "LocalSession",
    "Message",
    "MessageType",
    "MigrationRecord",
    "MigrationReport",
    "SessionSummary",
    "StorageBackend",
]
