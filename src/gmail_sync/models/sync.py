"""Sync state, progress events and session results."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class ResumableSyncState(BaseModel):
    """Progress of an interrupted full sync.

    A missing page token means the next page is the start of the mailbox.
    """

    page_token: str | None = Field(default=None, description="Gmail list pagination cursor")
    fetched_count: int = Field(default=0, ge=0, description="Message refs fetched so far")


class SyncPhase(str, Enum):
    """Progress event kinds reported by the orchestrator."""

    STARTING = "starting"
    RESUMING = "resuming"
    FETCHING_HISTORY = "fetching_history"
    FETCHING_MESSAGES = "fetching_messages"
    PROCESSING_CHANGES = "processing_changes"
    SAVING = "saving"
    COMPLETE = "complete"
    FULL_SYNC_COMPLETE = "full_sync_complete"
    NO_CHANGES = "no_changes"
    WAITING = "waiting"
    ERROR = "error"


class SyncProgress(BaseModel):
    """A single progress event. Only the fields relevant to ``phase`` are set."""

    phase: SyncPhase
    fetched: int | None = None
    current: int | None = None
    total: int | None = None
    count: int | None = None
    added: int | None = None
    modified: int | None = None
    deleted: int | None = None
    wait_seconds: float | None = None
    message: str | None = None

    @classmethod
    def starting(cls) -> SyncProgress:
        return cls(phase=SyncPhase.STARTING)

    @classmethod
    def resuming(cls, fetched: int) -> SyncProgress:
        return cls(phase=SyncPhase.RESUMING, fetched=fetched)

    @classmethod
    def fetching_history(cls) -> SyncProgress:
        return cls(phase=SyncPhase.FETCHING_HISTORY)

    @classmethod
    def fetching_messages(cls, current: int, total: int) -> SyncProgress:
        return cls(phase=SyncPhase.FETCHING_MESSAGES, current=current, total=total)

    @classmethod
    def processing_changes(cls, count: int) -> SyncProgress:
        return cls(phase=SyncPhase.PROCESSING_CHANGES, count=count)

    @classmethod
    def saving(cls) -> SyncProgress:
        return cls(phase=SyncPhase.SAVING)

    @classmethod
    def complete(cls, added: int, modified: int, deleted: int) -> SyncProgress:
        return cls(phase=SyncPhase.COMPLETE, added=added, modified=modified, deleted=deleted)

    @classmethod
    def full_sync_complete(cls, count: int) -> SyncProgress:
        return cls(phase=SyncPhase.FULL_SYNC_COMPLETE, count=count)

    @classmethod
    def no_changes(cls) -> SyncProgress:
        return cls(phase=SyncPhase.NO_CHANGES)

    @classmethod
    def waiting(cls, wait_seconds: float, message: str) -> SyncProgress:
        return cls(phase=SyncPhase.WAITING, wait_seconds=wait_seconds, message=message)

    @classmethod
    def error(cls, message: str) -> SyncProgress:
        return cls(phase=SyncPhase.ERROR, message=message)


class SyncResultKind(str, Enum):
    SUCCESS = "success"
    FULL_SYNC = "full_sync"
    NO_CHANGES = "no_changes"


class SyncResult(BaseModel):
    """Outcome of one orchestrated sync session."""

    kind: SyncResultKind
    added: int = 0
    modified: int = 0
    deleted: int = 0
    count: int = 0
    completed: bool = Field(
        default=True,
        description="False when a full sync stopped at its session limits with pages left",
    )

    @classmethod
    def success(cls, added: int, modified: int, deleted: int) -> SyncResult:
        return cls(kind=SyncResultKind.SUCCESS, added=added, modified=modified, deleted=deleted)

    @classmethod
    def full_sync(cls, count: int, completed: bool = True) -> SyncResult:
        return cls(kind=SyncResultKind.FULL_SYNC, count=count, completed=completed)

    @classmethod
    def no_changes(cls) -> SyncResult:
        return cls(kind=SyncResultKind.NO_CHANGES)
