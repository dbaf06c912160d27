"""Gmail REST API wire models.

Only the fields the sync engine reads are modelled; everything else in the
JSON is ignored. Field names follow Python conventions and map to Gmail's
camelCase keys through aliases.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


class MessageRef(_WireModel):
    """Reference to a message as returned by list and history endpoints."""

    id: str
    thread_id: str = Field(default="", alias="threadId")


class MessageListResponse(_WireModel):
    """One page of users.messages.list."""

    messages: list[MessageRef] = Field(default_factory=list)
    next_page_token: str | None = Field(default=None, alias="nextPageToken")
    result_size_estimate: int | None = Field(default=None, alias="resultSizeEstimate")


class Header(_WireModel):
    name: str
    value: str


class PartBody(_WireModel):
    size: int = 0
    data: str | None = None
    attachment_id: str | None = Field(default=None, alias="attachmentId")


class MessagePart(_WireModel):
    """A node in the MIME tree. The top-level payload is a part too."""

    part_id: str | None = Field(default=None, alias="partId")
    mime_type: str | None = Field(default=None, alias="mimeType")
    filename: str | None = None
    headers: list[Header] = Field(default_factory=list)
    body: PartBody | None = None
    parts: list[MessagePart] = Field(default_factory=list)

    def header(self, name: str) -> str | None:
        """Return the first header value matching ``name`` case-insensitively."""
        wanted = name.lower()
        for h in self.headers:
            if h.name.lower() == wanted:
                return h.value
        return None


class GmailMessage(_WireModel):
    """users.messages.get response."""

    id: str
    thread_id: str = Field(default="", alias="threadId")
    label_ids: list[str] = Field(default_factory=list, alias="labelIds")
    snippet: str | None = None
    history_id: str | None = Field(default=None, alias="historyId")
    internal_date: str | None = Field(default=None, alias="internalDate")
    payload: MessagePart | None = None
    size_estimate: int | None = Field(default=None, alias="sizeEstimate")


class MessageAdded(_WireModel):
    message: MessageRef


class MessageDeleted(_WireModel):
    message: MessageRef


class LabelChange(_WireModel):
    message: MessageRef
    label_ids: list[str] = Field(default_factory=list, alias="labelIds")


class HistoryRecord(_WireModel):
    id: str | None = None
    messages_added: list[MessageAdded] = Field(default_factory=list, alias="messagesAdded")
    messages_deleted: list[MessageDeleted] = Field(default_factory=list, alias="messagesDeleted")
    labels_added: list[LabelChange] = Field(default_factory=list, alias="labelsAdded")
    labels_removed: list[LabelChange] = Field(default_factory=list, alias="labelsRemoved")


class HistoryResponse(_WireModel):
    """users.history.list response; pages are merged by the client."""

    history: list[HistoryRecord] = Field(default_factory=list)
    history_id: str = Field(alias="historyId")
    next_page_token: str | None = Field(default=None, alias="nextPageToken")


class GmailLabel(_WireModel):
    id: str
    name: str
    type: str | None = None
    messages_total: int | None = Field(default=None, alias="messagesTotal")
    messages_unread: int | None = Field(default=None, alias="messagesUnread")
    threads_total: int | None = Field(default=None, alias="threadsTotal")
    threads_unread: int | None = Field(default=None, alias="threadsUnread")


class GmailProfile(_WireModel):
    email_address: str = Field(alias="emailAddress")
    messages_total: int | None = Field(default=None, alias="messagesTotal")
    threads_total: int | None = Field(default=None, alias="threadsTotal")
    history_id: str = Field(alias="historyId")


class MailboxStats(BaseModel):
    """Quick mailbox summary built from the profile and two label lookups."""

    email_address: str
    total_messages: int
    total_threads: int
    inbox_messages: int
    inbox_unread: int
    total_unread: int
    history_id: str


class AttachmentInfo(BaseModel):
    """Attachment metadata found in a message's MIME tree."""

    model_config = ConfigDict(frozen=True)

    attachment_id: str
    filename: str
    mime_type: str | None = None
    size: int = 0
