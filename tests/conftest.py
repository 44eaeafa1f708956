"""
Pytest configuration and fixtures for SpaceSync tests.

Provides temp-directory key-value stores, repositories, and an in-process
fake of the conversation service served through ``httpx.MockTransport``.
"""

import json
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from spacesync.auth import StaticAuthState
from spacesync.identifiers import SessionIdentifierResolver
from spacesync.keys import StoreKeys
from spacesync.kvstore import KeyValueStore
from spacesync.models import LocalSession, Message
from spacesync.repositories.local import LocalSessionRepository
from spacesync.repositories.remote import RemoteConversationRepository
from spacesync.retry import RetryConfig
from spacesync.store import ConversationStore

TEST_TOKEN = "test-token"
SERVER_URL = "http://space.test"

BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeConversationService:
    """
    Minimal in-memory conversation service.

    Requires ``Authorization: Bearer <token>`` on every request and keeps
    conversations in a dict. ``fail_titles`` makes creation fail with a 500
    for conversations with those titles.
    """

    def __init__(self, token: str = TEST_TOKEN):
        self.token = token
        self.conversations: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_titles: set[str] = set()
        self.fail_all_with: Optional[int] = None
        self._tick = 0

    def _now(self) -> str:
        self._tick += 1
        return (BASE_TIME + timedelta(seconds=self._tick)).isoformat()

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def created(self) -> list[dict[str, Any]]:
        return list(self.conversations.values())

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"error": "Unauthorized"})
        if self.fail_all_with is not None:
            return httpx.Response(self.fail_all_with, json={"error": "Service unavailable"})

        parts = request.url.path.strip("/").split("/")
        if parts[:2] != ["api", "conversations"]:
            return httpx.Response(404, json={"error": "Not found"})

        if len(parts) == 2:
            if request.method == "GET":
                return self._list()
            if request.method == "POST":
                return self._create(json.loads(request.content))
        elif len(parts) == 3:
            conversation = self.conversations.get(parts[2])
            if conversation is None:
                return httpx.Response(404, json={"error": "Conversation not found"})
            if request.method == "GET":
                return httpx.Response(200, json=conversation)
            if request.method == "PUT":
                return self._update(conversation, json.loads(request.content))
            if request.method == "DELETE":
                del self.conversations[parts[2]]
                return httpx.Response(200, json={"success": True})
        elif len(parts) == 4 and parts[3] == "messages" and request.method == "POST":
            conversation = self.conversations.get(parts[2])
            if conversation is None:
                return httpx.Response(404, json={"error": "Conversation not found"})
            return self._append(conversation, json.loads(request.content))

        return httpx.Response(405, json={"error": "Method not allowed"})

    def _list(self) -> httpx.Response:
        items = sorted(
            self.conversations.values(), key=lambda c: c["updated_at"], reverse=True
        )
        summaries = []
        for conversation in items:
            summary = {k: v for k, v in conversation.items() if k != "messages"}
            summary["message_count"] = len(conversation["messages"])
            summaries.append(summary)
        return httpx.Response(200, json=summaries)

    def _create(self, body: dict[str, Any]) -> httpx.Response:
        if body.get("title") in self.fail_titles:
            return httpx.Response(500, json={"error": "Failed to create conversation"})
        now = self._now()
        conversation = {
            "id": str(uuid.uuid4()),
            "title": body.get("title"),
            "metadata": body.get("metadata") or {},
            "created_at": now,
            "updated_at": now,
            "messages": [],
        }
        self.conversations[conversation["id"]] = conversation
        return httpx.Response(201, json=conversation)

    def _update(self, conversation: dict[str, Any], body: dict[str, Any]) -> httpx.Response:
        if "title" in body:
            conversation["title"] = body["title"]
        if "metadata" in body:
            conversation["metadata"] = body["metadata"]
        conversation["updated_at"] = self._now()
        return httpx.Response(200, json=conversation)

    def _append(self, conversation: dict[str, Any], body: dict[str, Any]) -> httpx.Response:
        if body.get("type") not in ("system", "user", "assistant", "advisor_json"):
            return httpx.Response(400, json={"error": "Invalid message type"})
        message = {
            "id": str(uuid.uuid4()),
            "conversation_id": conversation["id"],
            "type": body["type"],
            "content": body.get("content", ""),
            "metadata": body.get("metadata") or {},
            "created_at": self._now(),
        }
        conversation["messages"].append(message)
        conversation["updated_at"] = message["created_at"]
        return httpx.Response(201, json=message)


def build_session(
    session_id: int, *messages: tuple[str, str], minutes: int = 0, **extra: Any
) -> LocalSession:
    """Build a local session from (type, content) pairs."""
    timestamp = BASE_TIME + timedelta(minutes=minutes)
    return LocalSession(
        id=session_id,
        timestamp=timestamp,
        messages=[
            Message(type=kind, content=content, timestamp=timestamp + timedelta(seconds=i))
            for i, (kind, content) in enumerate(messages)
        ],
        **extra,
    )


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def kv(store_dir: Path) -> KeyValueStore:
    """Key-value store in a temp directory."""
    return KeyValueStore(store_dir)


@pytest.fixture
def keys() -> StoreKeys:
    return StoreKeys()


@pytest.fixture
def local_repo(kv: KeyValueStore, keys: StoreKeys) -> LocalSessionRepository:
    return LocalSessionRepository(kv, keys)


@pytest.fixture
def service() -> FakeConversationService:
    return FakeConversationService()


@pytest.fixture
def auth() -> StaticAuthState:
    """Signed-in auth state."""
    return StaticAuthState(TEST_TOKEN, server_url=SERVER_URL)


@pytest.fixture
def anonymous() -> StaticAuthState:
    return StaticAuthState(None, server_url=SERVER_URL)


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(max_retries=2, initial_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def remote_repo(
    service: FakeConversationService, auth: StaticAuthState, fast_retry: RetryConfig
) -> RemoteConversationRepository:
    return RemoteConversationRepository(
        SERVER_URL, auth, retry_config=fast_retry, transport=service.transport
    )


@pytest.fixture
def conversation_store(
    local_repo: LocalSessionRepository,
    remote_repo: RemoteConversationRepository,
    auth: StaticAuthState,
) -> ConversationStore:
    """Facade wired to the temp store and the fake service, following auth."""
    resolver = SessionIdentifierResolver(lambda: auth.is_authenticated)
    return ConversationStore(local_repo, remote_repo, resolver)


@pytest.fixture
def make_session():
    """Factory for local sessions: make_session(1, ("user", "Hi"), minutes=5)."""
    return build_session
