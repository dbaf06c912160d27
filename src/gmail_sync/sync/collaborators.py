"""Best-effort collaborators notified by the sync engines.

Attachment processing and sender statistics are side concerns: a failure in
either is logged and never turns a sync into a failed sync.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

import structlog

from gmail_sync.gmail.parsing import extract_attachments
from gmail_sync.models import AttachmentInfo, GmailMessage, MessageRecord

logger = structlog.get_logger()


class AttachmentProcessor(Protocol):
    async def process_message_attachments(
        self,
        message_id: str,
        attachments: Sequence[AttachmentInfo],
    ) -> object: ...


class SenderStatsUpdater(Protocol):
    def rebuild_all_from_store(self) -> object: ...

    def update_for_domains(self, records: Iterable[MessageRecord]) -> object: ...


async def notify_attachments(
    processor: AttachmentProcessor | None,
    messages: Sequence[GmailMessage],
) -> None:
    if processor is None:
        return
    for message in messages:
        infos = extract_attachments(message)
        if not infos:
            continue
        try:
            await processor.process_message_attachments(message.id, infos)
        except Exception as exc:  # noqa: BLE001
            logger.warning("attachment_processing_failed", message_id=message.id, error=str(exc))


def update_sender_stats(
    updater: SenderStatsUpdater | None,
    records: Sequence[MessageRecord],
) -> None:
    if updater is None or not records:
        return
    try:
        updater.update_for_domains(records)
    except Exception as exc:  # noqa: BLE001
        logger.warning("sender_stats_update_failed", records=len(records), error=str(exc))


def rebuild_sender_stats(updater: SenderStatsUpdater | None) -> None:
    if updater is None:
        return
    try:
        updater.rebuild_all_from_store()
    except Exception as exc:  # noqa: BLE001
        logger.warning("sender_stats_rebuild_failed", error=str(exc))
