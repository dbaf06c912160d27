"""Repeated sync sessions until the mailbox is fully cached.

Large mailboxes need many bounded full-sync sessions. The driver runs them
back to back and adds a coarse, session-level backoff on top of the
client's per-request retries: minutes after rate limiting, a fixed wait
after other failures, and a pause after too many failures in a row.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum

import structlog

from gmail_sync.config import Settings
from gmail_sync.exceptions import (
    AuthenticationError,
    ForbiddenError,
    RateLimitedError,
    SyncCancelledError,
    UnauthorizedError,
)
from gmail_sync.gmail.quota import Sleep
from gmail_sync.models import SyncProgress, SyncResult
from gmail_sync.sync.control import CancellationToken, ProgressCallback, emit
from gmail_sync.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger()

PAUSED_MESSAGE = "Sync paused - too many errors"
_RATE_LIMIT_WORDS = ("rate", "quota", "forbidden")


class ContinuousSyncState(str, Enum):
    COMPLETED = "completed"
    PAUSED = "paused"
    NEEDS_REAUTH = "needs_reauth"
    CANCELLED = "cancelled"
    MAX_SESSIONS = "max_sessions"


@dataclass(frozen=True)
class ContinuousSyncReport:
    sessions: int
    state: ContinuousSyncState
    last_result: SyncResult | None = None
    consecutive_errors: int = 0


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, (RateLimitedError, ForbiddenError)):
        return True
    text = str(exc).lower()
    return any(word in text for word in _RATE_LIMIT_WORDS)


class ContinuousSyncDriver:
    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        settings: Settings | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
        progress: ProgressCallback | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self.settings = settings or orchestrator.settings
        self._sleep = sleep
        self._progress = progress

    def backoff_seconds(self, exc: BaseException, consecutive_errors: int) -> float:
        """Wait before the next session after ``consecutive_errors`` failures.

        Rate limiting backs off 1, 2, 4, 8, 16... minutes up to the configured
        cap; any other failure waits ``error_wait_seconds``.
        """
        if is_rate_limit_error(exc):
            minutes = min(2 ** (consecutive_errors - 1), self.settings.rate_limit_backoff_cap_minutes)
            return minutes * 60.0
        return self.settings.error_wait_seconds

    async def run(self, cancel: CancellationToken | None = None) -> ContinuousSyncReport:
        settings = self.settings
        sessions = 0
        errors = 0
        last_result: SyncResult | None = None

        def report(state: ContinuousSyncState) -> ContinuousSyncReport:
            logger.info(
                "continuous_sync_finished",
                state=state.value,
                sessions=sessions,
                consecutive_errors=errors,
            )
            return ContinuousSyncReport(
                sessions=sessions,
                state=state,
                last_result=last_result,
                consecutive_errors=errors,
            )

        while sessions < settings.max_sessions:
            if cancel is not None and cancel.cancelled:
                return report(ContinuousSyncState.CANCELLED)

            sessions += 1
            logger.info("continuous_sync_session_started", session=sessions)

            try:
                last_result = await self._orchestrator.sync(self._progress, cancel)
            except (UnauthorizedError, AuthenticationError):
                logger.warning("continuous_sync_needs_reauth", session=sessions)
                return report(ContinuousSyncState.NEEDS_REAUTH)
            except SyncCancelledError:
                return report(ContinuousSyncState.CANCELLED)
            except Exception as exc:
                errors += 1
                if errors >= settings.max_consecutive_errors:
                    logger.error(
                        "continuous_sync_paused",
                        consecutive_errors=errors,
                        error=str(exc),
                    )
                    emit(self._progress, SyncProgress.error(PAUSED_MESSAGE))
                    return report(ContinuousSyncState.PAUSED)

                wait = self.backoff_seconds(exc, errors)
                rate_limited = is_rate_limit_error(exc)
                logger.warning(
                    "continuous_sync_session_failed",
                    session=sessions,
                    consecutive_errors=errors,
                    rate_limited=rate_limited,
                    wait_seconds=wait,
                    error=str(exc),
                )
                message = "Rate limited, waiting before retrying" if rate_limited else "Retrying after error"
                emit(self._progress, SyncProgress.waiting(wait, message))
                await self._sleep(wait)
                continue

            errors = 0
            if not self._orchestrator.has_incomplete_sync_to_resume():
                return report(ContinuousSyncState.COMPLETED)

            await self._sleep(settings.session_pause_seconds)

        return report(ContinuousSyncState.MAX_SESSIONS)
