"""Local SQLite cache for messages, sync state, sender stats and attachments."""

from .attachments import AttachmentRecord, AttachmentRepository
from .mail_store import MailStore
from .senders import SenderStats, SenderStatsRepository

__all__ = [
    "AttachmentRecord",
    "AttachmentRepository",
    "MailStore",
    "SenderStats",
    "SenderStatsRepository",
]
