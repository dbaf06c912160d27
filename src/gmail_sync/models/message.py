"""Cached message record.

A MessageRecord is the local copy of one remote Gmail message. The read flag
is derived from the tag set rather than stored next to it, so the two can
never disagree.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

UNREAD_LABEL = "UNREAD"
INBOX_LABEL = "INBOX"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRecord(BaseModel):
    """One cached remote message."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Gmail message ID (primary key)")
    thread_id: str = Field(default="", description="Gmail thread ID")
    subject: str = Field(default="", description="Subject header")
    snippet: str = Field(default="", description="Gmail snippet")
    sender: str = Field(default="", description="Raw From header")
    sender_domain: str = Field(default="", description="Lower-cased domain of the sender")
    recipients: list[str] = Field(default_factory=list, description="To addresses")
    date: datetime = Field(default_factory=_utcnow, description="Message timestamp")
    label_ids: frozenset[str] = Field(default_factory=frozenset, description="Gmail label IDs")
    has_attachments: bool = Field(default=False)
    raw_payload: bytes | None = Field(default=None, description="Optional cached raw payload")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_read(self) -> bool:
        return UNREAD_LABEL not in self.label_ids

    @property
    def is_inbox(self) -> bool:
        return INBOX_LABEL in self.label_ids

    def with_labels(
        self,
        add: Iterable[str] = (),
        remove: Iterable[str] = (),
    ) -> MessageRecord:
        """Return a copy with tags added/removed and ``updated_at`` bumped."""
        labels = (set(self.label_ids) - set(remove)) | set(add)
        return self.model_copy(
            update={"label_ids": frozenset(labels), "updated_at": _utcnow()}
        )

    def with_read_state(self, is_read: bool) -> MessageRecord:
        if is_read:
            return self.with_labels(remove=[UNREAD_LABEL])
        return self.with_labels(add=[UNREAD_LABEL])
