"""
Data models for sessions, messages and migration state.

Local sessions keep the exact JSON shape the key-value store has always held
(``id``, ``timestamp``, ``messages`` plus whatever extra fields collaborators
attached). Remote conversations mirror the conversation service's payloads.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageType(str, Enum):
    """Closed set of message kinds."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ADVISOR_JSON = "advisor_json"
    ADVISOR_RESPONSE = "advisor_response"
    PARALLEL_ADVISOR_RESPONSE = "parallel_advisor_response"
    DEBUG = "debug"


class StorageBackend(str, Enum):
    """Which repository a session lives in."""

    LOCAL = "local"
    REMOTE = "remote"


def _lenient_timestamp(
    value: Any, handler: ValidatorFunctionWrapHandler
) -> Optional[datetime]:
    """Unreadable timestamps become None instead of failing the whole record."""
    try:
        return handler(value)
    except ValidationError:
        return None


class Message(BaseModel):
    """
    A single turn in a session.

    ``type`` is normally one of :class:`MessageType`; other strings written
    by older clients are kept as they are. Missing content and tags read as
    empty.
    """

    model_config = ConfigDict(extra="allow")

    type: str
    content: str = ""
    timestamp: Optional[datetime] = None
    tags: list[Any] = Field(default_factory=list)
    saved: bool = False  # Set once the message has been persisted

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, value: Any) -> Any:
        if isinstance(value, MessageType):
            return value.value
        return value

    @field_validator("content", mode="before")
    @classmethod
    def coerce_content(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, dict)):
            return [value]
        return value

    @field_validator("timestamp", mode="wrap")
    @classmethod
    def coerce_timestamp(
        cls, value: Any, handler: ValidatorFunctionWrapHandler
    ) -> Optional[datetime]:
        return _lenient_timestamp(value, handler)

    @property
    def is_system(self) -> bool:
        return self.type == MessageType.SYSTEM.value

    @property
    def is_placeholder(self) -> bool:
        """System message with no content; a UI artifact, not data."""
        return self.is_system and not self.content.strip()


class LocalSession(BaseModel):
    """A session record held in the local key-value store."""

    model_config = ConfigDict(extra="allow")

    id: int = Field(..., ge=0)
    title: Optional[str] = None
    timestamp: Optional[datetime] = None
    messages: list[Message] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("messages", mode="before")
    @classmethod
    def coerce_messages(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            # Entries that are not objects cannot be messages
            return [entry for entry in value if isinstance(entry, (dict, Message))]
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def coerce_metadata(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("timestamp", mode="wrap")
    @classmethod
    def coerce_timestamp(
        cls, value: Any, handler: ValidatorFunctionWrapHandler
    ) -> Optional[datetime]:
        return _lenient_timestamp(value, handler)

    @property
    def non_system_messages(self) -> list[Message]:
        return [m for m in self.messages if not m.is_system]

    @property
    def is_durable(self) -> bool:
        """Sessions with no non-system message are not worth keeping."""
        return bool(self.non_system_messages)

    @property
    def last_activity(self) -> datetime:
        """Timestamp of the last user turn, falling back to the session timestamp."""
        for message in reversed(self.messages):
            if message.type == MessageType.USER.value and message.timestamp:
                return _as_aware(message.timestamp)
        if self.timestamp:
            return _as_aware(self.timestamp)
        return datetime.min.replace(tzinfo=timezone.utc)


class RemoteMessage(BaseModel):
    """A message as returned by the conversation service."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    conversation_id: Optional[str] = None
    type: str
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class RemoteConversation(BaseModel):
    """A conversation as returned by the conversation service."""

    model_config = ConfigDict(extra="allow")

    id: str
    title: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    messages: list[RemoteMessage] = Field(default_factory=list)


class Conversation(BaseModel):
    """Backend-agnostic view of a session, returned by the conversation store."""

    id: str
    backend: StorageBackend
    title: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    messages: list[Message] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SessionSummary(BaseModel):
    """One entry of a session listing."""

    id: str
    backend: StorageBackend
    title: Optional[str] = None
    timestamp: Optional[datetime] = None
    message_count: int = 0


class MigrationStatus(str, Enum):
    NOT_STARTED = "not-started"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class MigrationSummary(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    date: Optional[datetime] = None


class MigrationRecord(BaseModel):
    """Process-wide record of whether migration has run."""

    status: MigrationStatus = MigrationStatus.NOT_STARTED
    completed_at: Optional[datetime] = None
    summary: Optional[MigrationSummary] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != MigrationStatus.NOT_STARTED


class MigrationProgress(BaseModel):
    current: int
    total: int
    session_id: Optional[int] = None


class MigrationResult(BaseModel):
    """Outcome of migrating one local session."""

    success: bool
    original_id: int
    new_id: Optional[str] = None
    message_count: Optional[int] = None
    error: Optional[str] = None


class MigrationReport(BaseModel):
    """Outcome of a whole migration batch."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    results: list[MigrationResult] = Field(default_factory=list)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
