"""Single entry point that picks full or delta sync for a mailbox."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime

import structlog

from gmail_sync.config import Settings
from gmail_sync.exceptions import (
    AuthenticationError,
    SyncCancelledError,
    SyncInProgressError,
    UnauthorizedError,
)
from gmail_sync.gmail.client import GmailClient
from gmail_sync.models import SyncProgress, SyncResult
from gmail_sync.store import MailStore
from gmail_sync.sync.collaborators import AttachmentProcessor, SenderStatsUpdater
from gmail_sync.sync.control import CancellationToken, ProgressCallback, emit
from gmail_sync.sync.delta_sync import DeltaSyncEngine
from gmail_sync.sync.full_sync import FullSyncEngine
from gmail_sync.sync.state import SyncStateRepository

logger = structlog.get_logger()

# Errors a full-sync fallback cannot fix.
_NO_FALLBACK = (UnauthorizedError, AuthenticationError, SyncCancelledError)


class SyncOrchestrator:
    """Runs one sync session at a time against one mailbox.

    Without a checkpoint, or while an interrupted full sync is pending, a
    session runs (or resumes) the full sync. Otherwise it applies the
    history since the checkpoint, and if that fails for any reason other
    than auth or cancellation it falls back to a full sync in the same call.

    Calling ``sync`` while a session is running raises
    ``SyncInProgressError``; sessions never overlap.
    """

    def __init__(
        self,
        client: GmailClient,
        store: MailStore,
        settings: Settings | None = None,
        *,
        attachments: AttachmentProcessor | None = None,
        sender_stats: SenderStatsUpdater | None = None,
    ) -> None:
        from gmail_sync.config import get_settings

        self.settings = settings or get_settings()
        self.state = SyncStateRepository(store)
        self._full = FullSyncEngine(
            client,
            store,
            self.state,
            self.settings,
            attachments=attachments,
            sender_stats=sender_stats,
        )
        self._delta = DeltaSyncEngine(
            client,
            store,
            self.state,
            self.settings,
            attachments=attachments,
            sender_stats=sender_stats,
        )
        self._lock = asyncio.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    async def sync(
        self,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> SyncResult:
        """Run one sync session.

        Raises:
            SyncInProgressError: If another session is running.
            UnauthorizedError, AuthenticationError: The user must sign in again.
            SyncCancelledError: ``cancel`` fired; persisted progress is kept.
        """
        return await self._run_exclusive(self._sync, progress, cancel)

    async def force_full_sync(
        self,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> SyncResult:
        """Forget the checkpoint and any partial progress, then full sync."""
        return await self._run_exclusive(self._forced_full_sync, progress, cancel)

    def has_incomplete_sync_to_resume(self) -> bool:
        return self.state.resumable_state() is not None

    def last_sync_time(self) -> datetime | None:
        return self.state.last_sync_time()

    def clear_sync_state(self) -> None:
        """Drop every checkpoint so the next session is a fresh full sync."""
        if self.is_syncing:
            raise SyncInProgressError("Cannot clear sync state while a sync is running")
        self.state.clear_all()
        logger.info("sync_state_cleared")

    async def _run_exclusive(
        self,
        session: Callable[[ProgressCallback | None, CancellationToken | None], Awaitable[SyncResult]],
        progress: ProgressCallback | None,
        cancel: CancellationToken | None,
    ) -> SyncResult:
        if self._lock.locked():
            raise SyncInProgressError("A sync is already running")

        async with self._lock:
            emit(progress, SyncProgress.starting())
            try:
                return await session(progress, cancel)
            except SyncCancelledError:
                logger.info("sync_cancelled")
                raise
            except Exception as exc:
                logger.error("sync_failed", error=str(exc), error_type=type(exc).__name__)
                emit(progress, SyncProgress.error(str(exc)))
                raise

    async def _sync(
        self,
        progress: ProgressCallback | None,
        cancel: CancellationToken | None,
    ) -> SyncResult:
        checkpoint = self.state.checkpoint()
        if checkpoint is None or self.has_incomplete_sync_to_resume():
            return await self._full_sync(progress, cancel)

        try:
            outcome = await self._delta.run(checkpoint, progress, cancel)
        except _NO_FALLBACK:
            raise
        except Exception as exc:
            logger.warning(
                "delta_sync_failed_falling_back_to_full_sync",
                checkpoint=checkpoint,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return await self._full_sync(progress, cancel)

        if not outcome.has_changes:
            emit(progress, SyncProgress.no_changes())
            return SyncResult.no_changes()

        emit(progress, SyncProgress.complete(outcome.added, outcome.modified, outcome.deleted))
        return SyncResult.success(outcome.added, outcome.modified, outcome.deleted)

    async def _forced_full_sync(
        self,
        progress: ProgressCallback | None,
        cancel: CancellationToken | None,
    ) -> SyncResult:
        self.state.clear_all()
        logger.info("forced_full_sync")
        return await self._full_sync(progress, cancel)

    async def _full_sync(
        self,
        progress: ProgressCallback | None,
        cancel: CancellationToken | None,
    ) -> SyncResult:
        outcome = await self._full.run(progress, cancel)
        if outcome.completed:
            emit(progress, SyncProgress.full_sync_complete(outcome.count))
        return SyncResult.full_sync(outcome.count, completed=outcome.completed)
