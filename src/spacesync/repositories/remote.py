"""
Remote conversation repository.

Asynchronous HTTP client for the account-scoped conversation service. Every
call carries the current bearer token; without one the call fails with
:class:`~spacesync.exceptions.AuthenticationRequiredError` before any request
is made.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import httpx

from spacesync.auth import AuthState
from spacesync.exceptions import AuthenticationRequiredError
from spacesync.models import RemoteConversation, RemoteMessage
from spacesync.retry import RetryConfig, check_response, with_async_retry

logger = logging.getLogger(__name__)


@dataclass
class RemoteConfig:
    """Configuration for the remote conversation client."""

    server_url: str
    timeout: float = 15.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)


class RemoteConversationRepository:
    """
    CRUD and message append against the conversation service.

    Usage:
        async with RemoteConversationRepository(server_url, auth) as remote:
            conversation = await remote.create("Planning", {"source": "cli"})
            await remote.append_message(conversation.id, "user", "Hello")
    """

    def __init__(
        self,
        server_url: str,
        auth: AuthState,
        timeout: float = 15.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the repository.

        Args:
            server_url: Base URL of the conversation service
            auth: Source of the bearer token
            timeout: Request timeout in seconds
            retry_config: Retry configuration
            transport: Optional httpx transport (used by tests)
        """
        self.config = RemoteConfig(
            server_url=server_url.rstrip("/"),
            timeout=timeout,
            retry_config=retry_config or RetryConfig(),
        )
        self.auth = auth
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def retry_config(self) -> RetryConfig:
        return self.config.retry_config

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.server_url,
                headers={"Content-Type": "application/json"},
                timeout=self.config.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RemoteConversationRepository":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        token = self.auth.access_token
        if not token:
            raise AuthenticationRequiredError()
        return {"Authorization": f"Bearer {token}"}

    @with_async_retry(idempotent=False)
    async def create(
        self, title: Optional[str] = None, metadata: Optional[dict[str, Any]] = None
    ) -> RemoteConversation:
        """Create a conversation; the service assigns its UUID and timestamps."""
        response = await self.client.post(
            "/api/conversations",
            json={"title": title, "metadata": metadata or {}},
            headers=self._headers(),
        )
        check_response(response, self.retry_config)
        conversation = RemoteConversation.model_validate(response.json())
        logger.debug(f"Created remote conversation {conversation.id}")
        return conversation

    @with_async_retry()
    async def load(self, conversation_id: str) -> RemoteConversation:
        """Load a conversation with all of its messages, oldest first."""
        response = await self.client.get(
            f"/api/conversations/{conversation_id}", headers=self._headers()
        )
        check_response(response, self.retry_config, resource_id=conversation_id)
        return RemoteConversation.model_validate(response.json())

    @with_async_retry()
    async def update(
        self, conversation_id: str, fields: dict[str, Any]
    ) -> RemoteConversation:
        """Update title and/or metadata."""
        response = await self.client.put(
            f"/api/conversations/{conversation_id}",
            json=fields,
            headers=self._headers(),
        )
        check_response(response, self.retry_config, resource_id=conversation_id)
        return RemoteConversation.model_validate(response.json())

    @with_async_retry(idempotent=False)
    async def append_message(
        self,
        conversation_id: str,
        type: str,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> RemoteMessage:
        """Append one message to the end of a conversation."""
        response = await self.client.post(
            f"/api/conversations/{conversation_id}/messages",
            json={"type": type, "content": content, "metadata": metadata or {}},
            headers=self._headers(),
        )
        check_response(response, self.retry_config, resource_id=conversation_id)
        return RemoteMessage.model_validate(response.json())

    async def add_messages(
        self, conversation_id: str, messages: Iterable[dict[str, Any]]
    ) -> list[RemoteMessage]:
        """Append messages one at a time, preserving order."""
        results = []
        for message in messages:
            results.append(
                await self.append_message(
                    conversation_id,
                    message["type"],
                    message["content"],
                    message.get("metadata"),
                )
            )
        return results

    @with_async_retry()
    async def list(self) -> list[RemoteConversation]:
        """All conversations of the signed-in account, most recently updated first."""
        response = await self.client.get("/api/conversations", headers=self._headers())
        check_response(response, self.retry_config)
        return [RemoteConversation.model_validate(item) for item in response.json()]

    @with_async_retry()
    async def delete(self, conversation_id: str) -> None:
        response = await self.client.delete(
            f"/api/conversations/{conversation_id}", headers=self._headers()
        )
        check_response(response, self.retry_config, resource_id=conversation_id)
        logger.info(f"Deleted remote conversation {conversation_id}")
