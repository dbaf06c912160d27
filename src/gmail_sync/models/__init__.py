"""Data models for the Gmail sync engine.

This module contains Pydantic models for data validation and serialization.
"""

from .gmail import (
    AttachmentInfo,
    GmailLabel,
    GmailMessage,
    GmailProfile,
    HistoryRecord,
    HistoryResponse,
    MailboxStats,
    MessageListResponse,
    MessagePart,
    MessageRef,
)
from .message import INBOX_LABEL, UNREAD_LABEL, MessageRecord
from .sync import (
    ResumableSyncState,
    SyncPhase,
    SyncProgress,
    SyncResult,
    SyncResultKind,
)

__all__ = [
    "AttachmentInfo",
    "GmailLabel",
    "GmailMessage",
    "GmailProfile",
    "HistoryRecord",
    "HistoryResponse",
    "INBOX_LABEL",
    "MailboxStats",
    "MessageListResponse",
    "MessagePart",
    "MessageRecord",
    "MessageRef",
    "ResumableSyncState",
    "SyncPhase",
    "SyncProgress",
    "SyncResult",
    "SyncResultKind",
    "UNREAD_LABEL",
]
