"""Typed access to the sync bookkeeping kept in the store's key/value table."""

from __future__ import annotations

from datetime import datetime

import structlog
from pydantic import ValidationError

from gmail_sync.models import ResumableSyncState
from gmail_sync.store import MailStore
from gmail_sync.store.mail_store import iso_utc
from gmail_sync.utils import utcnow

logger = structlog.get_logger()

HISTORY_ID_KEY = "gmail_history_id"
LAST_SYNC_KEY = "last_sync_timestamp"
FULL_SYNC_STATE_KEY = "full_sync_state"


class SyncStateRepository:
    """Checkpoint, last-sync time and resumable full-sync progress.

    Each value lives in a single row, so every write is one atomic upsert.
    """

    def __init__(self, store: MailStore) -> None:
        self._store = store

    def checkpoint(self) -> str | None:
        return self._store.get_state(HISTORY_ID_KEY)

    def set_checkpoint(self, history_id: str) -> None:
        self._store.set_state(HISTORY_ID_KEY, history_id)
        logger.debug("sync_checkpoint_saved", history_id=history_id)

    def last_sync_time(self) -> datetime | None:
        value = self._store.get_state(LAST_SYNC_KEY)
        if value is None:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning("sync_timestamp_unreadable", value=value)
            return None

    def record_sync_time(self, at: datetime | None = None) -> None:
        self._store.set_state(LAST_SYNC_KEY, iso_utc(at or utcnow()))

    def resumable_state(self) -> ResumableSyncState | None:
        """Return the interrupted full-sync progress, if any.

        An unreadable value is treated as "start from the beginning"; the
        full sync is idempotent so that only costs a re-fetch.
        """
        raw = self._store.get_state(FULL_SYNC_STATE_KEY)
        if raw is None:
            return None
        try:
            return ResumableSyncState.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("full_sync_state_unreadable", error=str(exc))
            return ResumableSyncState()

    def save_resumable_state(self, state: ResumableSyncState) -> None:
        self._store.set_state(FULL_SYNC_STATE_KEY, state.model_dump_json())

    def clear_resumable_state(self) -> None:
        self._store.delete_state(FULL_SYNC_STATE_KEY)

    def clear_all(self) -> None:
        self._store.clear_state()
