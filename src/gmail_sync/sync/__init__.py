"""Mailbox synchronization: full sync, delta sync and their orchestration."""

from .collaborators import AttachmentProcessor, SenderStatsUpdater
from .continuous import (
    ContinuousSyncDriver,
    ContinuousSyncReport,
    ContinuousSyncState,
    is_rate_limit_error,
)
from .control import CancellationToken, ProgressCallback
from .delta_sync import ChangeSet, DeltaSyncEngine, DeltaSyncOutcome, reconcile_changes
from .full_sync import FullSyncEngine, FullSyncOutcome
from .orchestrator import SyncOrchestrator
from .state import SyncStateRepository

__all__ = [
    "AttachmentProcessor",
    "CancellationToken",
    "ChangeSet",
    "ContinuousSyncDriver",
    "ContinuousSyncReport",
    "ContinuousSyncState",
    "DeltaSyncEngine",
    "DeltaSyncOutcome",
    "FullSyncEngine",
    "FullSyncOutcome",
    "ProgressCallback",
    "SenderStatsUpdater",
    "SyncOrchestrator",
    "SyncStateRepository",
    "is_rate_limit_error",
    "reconcile_changes",
]
