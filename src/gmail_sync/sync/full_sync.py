"""Resumable full mailbox sync.

The engine pages through the whole mailbox with ``messages.list``, fetches
every listed message in small batches and writes the converted records to
the store.

Every page ends with its records upserted and then the resume cursor saved,
before the next page is listed. The stored ``ResumableSyncState`` therefore
never points past a record that is not yet in the store, and a hard crash
costs at most a re-fetch of one page. Sender statistics are refreshed every
``flush_every_pages`` pages and once more when the invocation ends.

A single invocation is bounded by ``pages_per_session`` and
``max_fetched``; the next invocation continues from the saved cursor.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from gmail_sync.config import Settings
from gmail_sync.gmail.client import GmailClient
from gmail_sync.gmail.parsing import message_to_record
from gmail_sync.models import MessageRecord, ResumableSyncState, SyncProgress
from gmail_sync.store import MailStore
from gmail_sync.sync.collaborators import (
    AttachmentProcessor,
    SenderStatsUpdater,
    notify_attachments,
    update_sender_stats,
)
from gmail_sync.sync.control import CancellationToken, ProgressCallback, check_cancelled, emit
from gmail_sync.sync.state import SyncStateRepository
from gmail_sync.utils import chunked

logger = structlog.get_logger()


@dataclass(frozen=True)
class FullSyncOutcome:
    """Result of one full-sync invocation.

    Attributes:
        count: Messages listed so far across every invocation of this sync.
        completed: True when the mailbox was exhausted and a checkpoint saved.
    """

    count: int
    completed: bool


class FullSyncEngine:
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
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> FullSyncOutcome:
        """Run (or resume) the full sync for at most one session.

        Raises:
            SyncCancelledError: When ``cancel`` fires; progress is saved first.
        """

        settings = self.settings
        resumed = self._state.resumable_state()
        if resumed is not None:
            logger.info(
                "full_sync_resuming",
                page_token=resumed.page_token,
                fetched=resumed.fetched_count,
            )
            emit(progress, SyncProgress.resuming(resumed.fetched_count))
            saved = resumed
        else:
            logger.info("full_sync_started")
            saved = ResumableSyncState()
            self._state.save_resumable_state(saved)

        page_token = saved.page_token
        fetched = saved.fetched_count
        # Cursor and count as of the last fully processed page.
        cursor = saved
        page_records: list[MessageRecord] = []
        # Stored records whose sender statistics are not refreshed yet.
        unscored: list[MessageRecord] = []
        pages = 0
        fetched_this_session = 0
        finished = False

        try:
            while True:
                check_cancelled(cancel)
                page = await self._client.list_messages(
                    max_results=settings.full_sync_page_size,
                    page_token=page_token,
                )
                ids = [ref.id for ref in page.messages]

                for chunk in chunked(ids, settings.fetch_batch_size):
                    check_cancelled(cancel)
                    messages = await self._client.batch_get_messages(chunk, format="full")
                    for message in messages:
                        record = message_to_record(message)
                        if record is not None:
                            page_records.append(record)
                    await notify_attachments(self._attachments, messages)

                    fetched += len(chunk)
                    fetched_this_session += len(chunk)
                    total = max(page.result_size_estimate or 0, fetched)
                    emit(progress, SyncProgress.fetching_messages(fetched, total))

                pages += 1
                page_token = page.next_page_token
                self._store_page(page_records, unscored, progress)
                cursor = ResumableSyncState(page_token=page_token, fetched_count=fetched)

                if page_token is None:
                    finished = True
                    break

                self._state.save_resumable_state(cursor)
                logger.debug("full_sync_progress_saved", pages=pages, fetched=fetched)

                if pages % settings.flush_every_pages == 0:
                    self._refresh_sender_stats(unscored)

                if pages >= settings.pages_per_session or fetched_this_session >= settings.max_fetched:
                    logger.info(
                        "full_sync_session_limit_reached",
                        pages=pages,
                        fetched_this_session=fetched_this_session,
                    )
                    break
        finally:
            # A partial page is stored, but the cursor stays before it.
            self._store_page(page_records, unscored, progress)
            self._refresh_sender_stats(unscored)
            if not finished:
                self._state.save_resumable_state(cursor)

        if not finished:
            return FullSyncOutcome(count=fetched, completed=False)

        check_cancelled(cancel)
        profile = await self._client.get_profile()
        self._state.set_checkpoint(profile.history_id)
        self._state.clear_resumable_state()
        self._state.record_sync_time()

        logger.info("full_sync_completed", fetched=fetched, history_id=profile.history_id)
        return FullSyncOutcome(count=fetched, completed=True)

    def _store_page(
        self,
        page_records: list[MessageRecord],
        unscored: list[MessageRecord],
        progress: ProgressCallback | None,
    ) -> None:
        if not page_records:
            return
        emit(progress, SyncProgress.saving())
        self._store.upsert_all(page_records)
        unscored.extend(page_records)
        logger.debug("full_sync_page_stored", records=len(page_records))
        page_records.clear()

    def _refresh_sender_stats(self, unscored: list[MessageRecord]) -> None:
        if not unscored:
            return
        batch = list(unscored)
        unscored.clear()
        update_sender_stats(self._sender_stats, batch)
