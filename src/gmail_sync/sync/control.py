"""Progress reporting and cooperative cancellation shared by the sync engines."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from gmail_sync.exceptions import SyncCancelledError
from gmail_sync.models import SyncProgress

logger = structlog.get_logger()

ProgressCallback = Callable[[SyncProgress], None]


class CancellationToken:
    """Cooperative cancellation flag.

    Engines check the token before every remote call; work that was
    already persisted stays valid and a later sync resumes from it.
    """

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise SyncCancelledError("Sync cancelled")


def check_cancelled(cancel: CancellationToken | None) -> None:
    if cancel is not None:
        cancel.raise_if_cancelled()


def emit(progress: ProgressCallback | None, event: SyncProgress) -> None:
    """Deliver a progress event; a failing listener never breaks the sync."""
    if progress is None:
        return
    try:
        progress(event)
    except Exception as exc:  # noqa: BLE001
        logger.warning("sync_progress_listener_failed", phase=event.phase.value, error=str(exc))
