"""Attachment metadata recorded while syncing."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from gmail_sync.models import AttachmentInfo
from gmail_sync.store.mail_store import MailStore, iso_utc
from gmail_sync.utils import utcnow

logger = structlog.get_logger()


@dataclass(frozen=True)
class AttachmentRecord:
    """One attachment of a cached message. Content is not stored."""

    id: str
    message_id: str
    attachment_id: str
    filename: str
    mime_type: str | None
    size: int


def attachment_key(message_id: str, attachment_id: str) -> str:
    return f"{message_id}_{attachment_id}"


class AttachmentRepository:
    """Stores attachment metadata for synced messages."""

    def __init__(self, store: MailStore) -> None:
        self._store = store

    async def process_message_attachments(
        self,
        message_id: str,
        attachments: Sequence[AttachmentInfo],
    ) -> int:
        """Record attachment metadata extracted from one message.

        Re-processing a message replaces its rows, so this is safe to call
        for messages fetched again after a resume or a label change.

        Returns:
            Number of attachments recorded.
        """

        if not attachments:
            return 0

        now_iso = iso_utc(utcnow())
        with self._store.connection() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO attachments (
                    id, message_id, attachment_id, filename, mime_type, size, created_at_iso
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        attachment_key(message_id, info.attachment_id),
                        message_id,
                        info.attachment_id,
                        info.filename,
                        info.mime_type,
                        info.size,
                        now_iso,
                    )
                    for info in attachments
                ],
            )
            conn.commit()

        logger.debug("attachments_recorded", message_id=message_id, count=len(attachments))
        return len(attachments)

    def for_message(self, message_id: str) -> list[AttachmentRecord]:
        with self._store.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, message_id, attachment_id, filename, mime_type, size
                FROM attachments
                WHERE message_id = ?
                ORDER BY filename, id;
                """,
                (message_id,),
            ).fetchall()

        return [
            AttachmentRecord(
                id=row["id"],
                message_id=row["message_id"],
                attachment_id=row["attachment_id"],
                filename=row["filename"],
                mime_type=row["mime_type"],
                size=int(row["size"] or 0),
            )
            for row in rows
        ]
