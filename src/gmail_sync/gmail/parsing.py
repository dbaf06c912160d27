"""Helpers for turning Gmail API messages into cached records."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone
from email.utils import getaddresses, parsedate_to_datetime

from gmail_sync.models import AttachmentInfo, GmailMessage, MessagePart, MessageRecord
from gmail_sync.utils import decode_base64url

NO_SUBJECT = "(No Subject)"
DEFAULT_ATTACHMENT_NAME = "attachment"


def _parse_address_list(value: str | None) -> list[str]:
    if not value:
        return []
    # getaddresses returns list[(name, addr)]
    return [addr for _, addr in getaddresses([value]) if addr]


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _walk(part: MessagePart) -> Iterator[MessagePart]:
    yield part
    for child in part.parts:
        yield from _walk(child)


def extract_email(from_header: str | None) -> str:
    """Return the bare address of a From header, or "" when there is none."""
    for addr in _parse_address_list(from_header):
        if "@" in addr:
            return addr.strip()
    return ""


def extract_domain(from_header: str | None) -> str:
    """Return the lower-cased sender domain of a From header.

    Examples:
        >>> extract_domain("Alice <alice@Example.COM>")
        'example.com'
        >>> extract_domain("no address here")
        ''
    """
    address = extract_email(from_header)
    if "@" not in address:
        return ""
    return address.rsplit("@", 1)[1].lower()


def extract_body(message: GmailMessage) -> tuple[str | None, str | None]:
    """Return the first ``(html, text)`` bodies found in the MIME tree."""
    if message.payload is None:
        return None, None

    html: str | None = None
    text: str | None = None
    for part in _walk(message.payload):
        data = part.body.data if part.body else None
        if not data:
            continue
        if part.mime_type == "text/html" and html is None:
            html = decode_base64url(data).decode("utf-8", errors="replace")
        elif part.mime_type == "text/plain" and text is None:
            text = decode_base64url(data).decode("utf-8", errors="replace")
    return html, text


def extract_attachments(message: GmailMessage) -> list[AttachmentInfo]:
    payload = message.payload
    if payload is None:
        return []

    found: list[AttachmentInfo] = []

    # Single-part messages can carry the attachment directly on the payload.
    if payload.body and payload.body.attachment_id:
        found.append(
            AttachmentInfo(
                attachment_id=payload.body.attachment_id,
                filename=payload.filename or DEFAULT_ATTACHMENT_NAME,
                mime_type=payload.mime_type,
                size=payload.body.size,
            )
        )

    for child in payload.parts:
        for part in _walk(child):
            if part.filename and part.body and part.body.attachment_id:
                found.append(
                    AttachmentInfo(
                        attachment_id=part.body.attachment_id,
                        filename=part.filename,
                        mime_type=part.mime_type,
                        size=part.body.size,
                    )
                )
    return found


def has_attachments(message: GmailMessage) -> bool:
    """True when the message carries at least one downloadable attachment.

    Defined through ``extract_attachments`` so the record flag always agrees
    with the metadata handed to the attachment collaborator. Parts that only
    declare a filename or an attachment disposition, with the data inline
    and no attachment id, do not count.
    """
    return bool(extract_attachments(message))


def message_date(message: GmailMessage) -> datetime:
    """Message timestamp from internalDate, then the Date header, then now."""
    if message.internal_date:
        try:
            return datetime.fromtimestamp(int(message.internal_date) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            pass

    header = message.payload.header("Date") if message.payload else None
    return _parse_date(header) or datetime.now(timezone.utc)


def message_to_record(message: GmailMessage) -> MessageRecord | None:
    """Convert a Gmail API message to a MessageRecord.

    Args:
        message: Gmail API message (format=full or metadata).

    Returns:
        The record, or None when the message has no payload to read
        headers from.
    """
    payload = message.payload
    if payload is None:
        return None

    sender = payload.header("From") or ""
    return MessageRecord(
        id=message.id,
        thread_id=message.thread_id,
        subject=payload.header("Subject") or NO_SUBJECT,
        snippet=message.snippet or "",
        sender=sender,
        sender_domain=extract_domain(sender),
        recipients=_parse_address_list(payload.header("To")),
        date=message_date(message),
        label_ids=frozenset(message.label_ids),
        has_attachments=has_attachments(message),
    )
