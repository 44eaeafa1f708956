"""
One-time migration of local sessions into the remote conversation service.

The flow is a small state machine::

    discover -> confirm -> migrating -> complete
        \\-> no-conversations

A failure of the batch as a whole sends the flow from ``migrating`` back to
``confirm`` with the discovered sessions kept, so the caller can retry
without discovering again. A failure of a single session is recorded in its
:class:`~spacesync.models.MigrationResult` and the batch carries on.
"""

import asyncio
import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError

from spacesync.exceptions import (
    AuthenticationRequiredError,
    MalformedRecordError,
    SpaceSyncError,
)
from spacesync.keys import StoreKeys
from spacesync.kvstore import KeyValueStore
from spacesync.models import (
    LocalSession,
    MigrationProgress,
    MigrationRecord,
    MigrationReport,
    MigrationResult,
    MigrationStatus,
    MigrationSummary,
    utc_now,
)
from spacesync.repositories.local import LocalSessionRepository
from spacesync.repositories.remote import RemoteConversationRepository

logger = logging.getLogger(__name__)

IMPORTED_FROM = "localStorage"
# Session-level fields carried over into the remote conversation's metadata
CARRIED_SESSION_FIELDS = ("metaphors", "advisorSuggestions", "voteHistory")

ProgressCallback = Callable[[MigrationProgress], None]


class MigrationStep(str, Enum):
    DISCOVER = "discover"
    CONFIRM = "confirm"
    MIGRATING = "migrating"
    COMPLETE = "complete"
    NO_CONVERSATIONS = "no-conversations"


class MigrationStatusStore:
    """Reads and writes the migration record keys in the local store."""

    def __init__(self, store: KeyValueStore, keys: Optional[StoreKeys] = None):
        self.store = store
        self.keys = keys or StoreKeys()

    def _get(self, key: str) -> Optional[str]:
        try:
            return self.store.get_item(key)
        except MalformedRecordError as e:
            logger.warning(f"Ignoring undecodable {key}: {e.reason}")
            return None

    def read(self) -> MigrationRecord:
        raw_status = self._get(self.keys.migration_status)
        try:
            status = MigrationStatus(raw_status) if raw_status else MigrationStatus.NOT_STARTED
        except ValueError:
            logger.warning(f"Ignoring unknown migration status {raw_status!r}")
            status = MigrationStatus.NOT_STARTED

        return MigrationRecord(
            status=status,
            completed_at=self._read_date(),
            summary=self._read_summary(),
        )

    def _read_date(self) -> Optional[datetime]:
        raw = self._get(self.keys.migration_date)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Ignoring malformed migration date {raw!r}")
            return None

    def _read_summary(self) -> Optional[MigrationSummary]:
        raw = self._get(self.keys.migration_summary)
        if not raw:
            return None
        try:
            return MigrationSummary.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring malformed migration summary: {e}")
            return None

    def write(self, status: MigrationStatus, summary: Optional[MigrationSummary] = None) -> None:
        now = utc_now()
        self.store.set_item(self.keys.migration_status, status.value)
        self.store.set_item(self.keys.migration_date, now.isoformat())
        if summary is not None:
            self.store.set_item(
                self.keys.migration_summary, summary.model_dump_json(exclude_none=True)
            )

    def reset(self) -> None:
        for key in (
            self.keys.migration_status,
            self.keys.migration_date,
            self.keys.migration_summary,
        ):
            self.store.remove_item(key)


def meaningful_messages(session: LocalSession) -> list[tuple[int, Any]]:
    """(original index, message) pairs, without empty system placeholders."""
    return [
        (index, message)
        for index, message in enumerate(session.messages)
        if not message.is_placeholder
    ]


def provenance_metadata(session: LocalSession) -> dict[str, Any]:
    extra = session.model_extra or {}
    metadata: dict[str, Any] = {
        field: extra.get(field) or [] for field in CARRIED_SESSION_FIELDS
    }
    metadata.update(session.metadata)
    metadata.update(
        {
            "importedFrom": IMPORTED_FROM,
            "originalId": session.id,
            "originalTimestamp": session.timestamp.isoformat() if session.timestamp else None,
            "migrationDate": utc_now().isoformat(),
        }
    )
    return metadata


class MigrationOrchestrator:
    """
    Moves every durable local session into the remote service, once.

    Usage:
        orchestrator = MigrationOrchestrator(local, remote, status_store)
        if orchestrator.discover() == MigrationStep.CONFIRM:
            orchestrator.confirm()
            report = await orchestrator.run(on_progress=print)
    """

    def __init__(
        self,
        local: LocalSessionRepository,
        remote: RemoteConversationRepository,
        status_store: Optional[MigrationStatusStore] = None,
        pause_seconds: float = 0.1,
    ):
        self.local = local
        self.remote = remote
        self.status_store = status_store or MigrationStatusStore(local.store, local.keys)
        self.pause_seconds = pause_seconds

        self.step = MigrationStep.DISCOVER
        self.sessions: list[LocalSession] = []
        self.error: Optional[str] = None
        self.report: Optional[MigrationReport] = None
        self.progress: Optional[MigrationProgress] = None

    def status(self) -> MigrationRecord:
        return self.status_store.read()

    def needs_migration(self) -> bool:
        """True while no terminal record exists and durable local sessions remain."""
        if self.status().is_terminal:
            return False
        return bool(self.local.list())

    def discover(self) -> MigrationStep:
        """
        Look for local sessions to migrate.

        A completed or skipped record ends the flow at ``no-conversations``
        even if stray local sessions exist, so nothing is migrated twice.
        """
        self.error = None
        record = self.status()
        if record.is_terminal:
            logger.info(f"Migration already {record.status.value}; nothing to do")
            self.sessions = []
            self.step = MigrationStep.NO_CONVERSATIONS
            return self.step

        self.sessions = self.local.list()
        if not self.sessions:
            self.step = MigrationStep.NO_CONVERSATIONS
        else:
            logger.info(f"Discovered {len(self.sessions)} local session(s) to migrate")
            self.step = MigrationStep.CONFIRM
        return self.step

    def confirm(self) -> int:
        """Move to confirmation. Returns the number of sessions that would migrate."""
        if self.step not in (MigrationStep.DISCOVER, MigrationStep.CONFIRM):
            raise SpaceSyncError(f"Cannot confirm migration from step {self.step.value}")
        if self.step == MigrationStep.DISCOVER:
            self.discover()
        return len(self.sessions)

    async def migrate_session(self, session: LocalSession) -> MigrationResult:
        """Migrate one session. Never raises; failures are returned in the result."""
        try:
            conversation = await self.remote.create(
                session.title or f"Imported Session {session.id}",
                provenance_metadata(session),
            )
            messages = [
                {
                    "type": message.type,
                    "content": message.content,
                    "metadata": {
                        "tags": list(message.tags),
                        "timestamp": message.timestamp.isoformat() if message.timestamp else None,
                        "imported": True,
                        "originalIndex": index,
                    },
                }
                for index, message in meaningful_messages(session)
            ]
            await self.remote.add_messages(conversation.id, messages)
        except Exception as e:
            logger.error(f"Failed to migrate session {session.id}: {e}")
            return MigrationResult(success=False, original_id=session.id, error=str(e))

        logger.info(f"Migrated session {session.id} -> {conversation.id}")
        return MigrationResult(
            success=True,
            original_id=session.id,
            new_id=conversation.id,
            message_count=len(messages),
        )

    async def run(self, on_progress: Optional[ProgressCallback] = None) -> MigrationReport:
        """
        Migrate the discovered sessions one after another.

        On success the record is written and the local copies of the sessions
        that made it across are deleted. Failed sessions keep their local copy.

        Raises:
            SpaceSyncError: If the batch could not run at all; the flow is
                back at ``confirm`` with ``error`` set
        """
        if self.step != MigrationStep.CONFIRM:
            raise SpaceSyncError(f"Cannot start migration from step {self.step.value}")

        self.step = MigrationStep.MIGRATING
        self.error = None
        try:
            report = await self._migrate_all(on_progress)
            self._finish(report)
        except Exception as e:
            logger.error(f"Migration failed: {e}")
            self.error = str(e)
            self.step = MigrationStep.CONFIRM
            raise

        self.report = report
        self.step = MigrationStep.COMPLETE
        return report

    async def _migrate_all(self, on_progress: Optional[ProgressCallback]) -> MigrationReport:
        if not self.remote.auth.is_authenticated:
            raise AuthenticationRequiredError("Sign in before migrating sessions")

        total = len(self.sessions)
        report = MigrationReport(total=total)
        for index, session in enumerate(self.sessions):
            self.progress = MigrationProgress(current=index + 1, total=total, session_id=session.id)
            if on_progress:
                on_progress(self.progress)

            result = await self.migrate_session(session)
            report.results.append(result)
            if result.success:
                report.successful += 1
            else:
                report.failed += 1

            if index < total - 1 and self.pause_seconds > 0:
                await asyncio.sleep(self.pause_seconds)
        return report

    def _finish(self, report: MigrationReport) -> None:
        summary = MigrationSummary(
            total=report.total,
            successful=report.successful,
            failed=report.failed,
            date=utc_now(),
        )
        self.status_store.write(MigrationStatus.COMPLETED, summary)
        logger.info(
            f"Migration completed: {report.successful} successful, {report.failed} failed"
        )

        if report.successful > 0:
            migrated = [r.original_id for r in report.results if r.success]
            removed = self.local.delete_many(migrated)
            logger.info(f"Cleaned up {len(removed)} migrated local session(s)")

    def skip(self) -> None:
        """Record that the user declined migration."""
        self.status_store.write(MigrationStatus.SKIPPED)
        self.step = MigrationStep.NO_CONVERSATIONS
        logger.info("Migration skipped")

    def reset_record(self) -> None:
        """Forget that migration ever ran. Explicit user action only."""
        self.status_store.reset()
        self.step = MigrationStep.DISCOVER
        self.sessions = []
        self.report = None
        logger.warning("Migration record reset")
