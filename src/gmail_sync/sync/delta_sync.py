"""Incremental sync from the Gmail history (change log)."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from gmail_sync.config import Settings
from gmail_sync.gmail.client import GmailClient
from gmail_sync.gmail.parsing import message_to_record
from gmail_sync.models import GmailMessage, HistoryRecord, MessageRecord, SyncProgress
from gmail_sync.store import MailStore
from gmail_sync.sync.collaborators import (
    AttachmentProcessor,
    SenderStatsUpdater,
    notify_attachments,
    rebuild_sender_stats,
    update_sender_stats,
)
from gmail_sync.sync.control import CancellationToken, ProgressCallback, check_cancelled, emit
from gmail_sync.sync.state import SyncStateRepository
from gmail_sync.utils import chunked

logger = structlog.get_logger()


@dataclass(frozen=True)
class ChangeSet:
    """Message ids classified from a batch of history records."""

    added: frozenset[str] = field(default_factory=frozenset)
    modified: frozenset[str] = field(default_factory=frozenset)
    deleted: frozenset[str] = field(default_factory=frozenset)

    @property
    def to_fetch(self) -> list[str]:
        return sorted(self.added | self.modified)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.modified) + len(self.deleted)


def reconcile_changes(records: Iterable[HistoryRecord]) -> ChangeSet:
    """Classify history records into added, modified and deleted ids.

    - an id both added and deleted in the batch is dropped from both sets
    - an id modified and added counts as added only
    - an id modified and deleted counts as deleted only
    """

    added: set[str] = set()
    deleted: set[str] = set()
    modified: set[str] = set()

    for record in records:
        added.update(item.message.id for item in record.messages_added)
        deleted.update(item.message.id for item in record.messages_deleted)
        modified.update(item.message.id for item in record.labels_added)
        modified.update(item.message.id for item in record.labels_removed)

    transient = added & deleted
    added -= transient
    deleted -= transient
    modified -= added | deleted | transient

    return ChangeSet(
        added=frozenset(added),
        modified=frozenset(modified),
        deleted=frozenset(deleted),
    )


@dataclass(frozen=True)
class DeltaSyncOutcome:
    history_id: str
    added: int = 0
    modified: int = 0
    deleted: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.deleted)


class DeltaSyncEngine:
    """Applies the changes recorded since a checkpoint to the store.

    Failures fetching the history (most often an expired checkpoint, which
    Gmail reports as 404) propagate to the caller unchanged.
    """

    def __init__(
        self,
        client: GmailClient,
        store: MailStore,
        state: SyncStateRepository,
        settings: Settings,
        *,
        attachments: AttachmentProcessor | None = None,
        sender_stats: SenderStatsUpdater | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._state = state
        self.settings = settings
        self._attachments = attachments
        self._sender_stats = sender_stats

    async def run(
        self,
        checkpoint: str,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> DeltaSyncOutcome:
        emit(progress, SyncProgress.fetching_history())
        check_cancelled(cancel)
        response = await self._client.list_history(checkpoint)

        if not response.history:
            self._state.set_checkpoint(response.history_id)
            self._state.record_sync_time()
            logger.info("delta_sync_no_changes", history_id=response.history_id)
            return DeltaSyncOutcome(history_id=response.history_id)

        changes = reconcile_changes(response.history)
        emit(progress, SyncProgress.processing_changes(changes.total))
        logger.info(
            "delta_sync_changes",
            history_records=len(response.history),
            added=len(changes.added),
            modified=len(changes.modified),
            deleted=len(changes.deleted),
        )

        messages = await self._fetch(changes.to_fetch, progress, cancel)
        records: list[MessageRecord] = []
        for message in messages:
            record = message_to_record(message)
            if record is not None:
                records.append(record)
        await notify_attachments(self._attachments, messages)

        emit(progress, SyncProgress.saving())
        if changes.deleted:
            self._store.delete_all(changes.deleted)
        self._store.upsert_all(records)

        if changes.deleted:
            rebuild_sender_stats(self._sender_stats)
        else:
            update_sender_stats(self._sender_stats, records)

        self._state.set_checkpoint(response.history_id)
        self._state.record_sync_time()

        logger.info(
            "delta_sync_completed",
            history_id=response.history_id,
            upserted=len(records),
            deleted=len(changes.deleted),
        )
        return DeltaSyncOutcome(
            history_id=response.history_id,
            added=len(changes.added),
            modified=len(changes.modified),
            deleted=len(changes.deleted),
        )

    async def _fetch(
        self,
        ids: list[str],
        progress: ProgressCallback | None,
        cancel: CancellationToken | None,
    ) -> list[GmailMessage]:
        messages: list[GmailMessage] = []
        done = 0
        for chunk in chunked(ids, self.settings.fetch_batch_size):
            check_cancelled(cancel)
            messages.extend(await self._client.batch_get_messages(chunk, format="full"))
            done += len(chunk)
            emit(progress, SyncProgress.fetching_messages(done, len(ids)))
        return messages
