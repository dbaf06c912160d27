"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import base64
from collections.abc import Callable
from typing import Any

import pytest

from gmail_sync.config import Settings
from gmail_sync.exceptions import NotFoundError
from gmail_sync.models import (
    GmailMessage,
    GmailProfile,
    HistoryResponse,
    MessageListResponse,
    MessageRef,
)
from gmail_sync.store import MailStore


def encode_body(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def message_json(
    message_id: str,
    *,
    sender: str = "Alice Example <alice@example.com>",
    subject: str | None = "Hello",
    labels: tuple[str, ...] = ("INBOX", "UNREAD"),
    internal_date: int | None = 1_700_000_000_000,
    thread_id: str | None = None,
    with_attachment: bool = False,
) -> dict[str, Any]:
    """Build a Gmail ``messages.get`` (format=full) JSON body."""
    headers = [
        {"name": "From", "value": sender},
        {"name": "To", "value": "me@example.com"},
        {"name": "Date", "value": "Tue, 14 Nov 2023 22:13:20 +0000"},
    ]
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})

    parts: list[dict[str, Any]] = [
        {"partId": "0", "mimeType": "text/plain", "body": {"size": 5, "data": encode_body("hello")}},
    ]
    if with_attachment:
        parts.append(
            {
                "partId": "1",
                "mimeType": "application/pdf",
                "filename": "invoice.pdf",
                "body": {"size": 1024, "attachmentId": f"att-{message_id}"},
            }
        )

    data: dict[str, Any] = {
        "id": message_id,
        "threadId": thread_id or f"thread-{message_id}",
        "labelIds": list(labels),
        "snippet": f"snippet {message_id}",
        "historyId": "1",
        "payload": {"mimeType": "multipart/mixed", "headers": headers, "parts": parts},
    }
    if internal_date is not None:
        data["internalDate"] = str(internal_date)
    return data


class FakeGmail:
    """In-memory stand-in for GmailClient, driven by the sync engine tests.

    Messages are listed in insertion order; page tokens are string offsets.
    History responses (or exceptions) are served in order from
    ``history_responses``.
    """

    def __init__(self, messages: list[dict[str, Any]] | None = None, history_id: str = "1000") -> None:
        self.messages: dict[str, GmailMessage] = {}
        for data in messages or []:
            self.add(data)
        self.history_id = history_id
        self.history_responses: list[HistoryResponse | Exception] = []
        self.list_calls: list[str | None] = []
        self.fetched_ids: list[str] = []
        self.history_calls: list[str] = []
        self.fail_list_call: int | None = None
        self.list_error: Exception | None = None

    def add(self, data: dict[str, Any]) -> None:
        message = GmailMessage.model_validate(data)
        self.messages[message.id] = message

    def remove(self, message_id: str) -> None:
        self.messages.pop(message_id, None)

    def queue_history(self, history_id: str, records: list[dict[str, Any]] | None = None) -> None:
        self.history_responses.append(
            HistoryResponse.model_validate({"historyId": history_id, "history": records or []})
        )

    async def list_messages(
        self,
        max_results: int = 100,
        page_token: str | None = None,
        **kwargs: Any,
    ) -> MessageListResponse:
        self.list_calls.append(page_token)
        if self.fail_list_call is not None and len(self.list_calls) == self.fail_list_call:
            raise self.list_error or RuntimeError("list failed")

        ids = list(self.messages)
        start = int(page_token or 0)
        end = start + max_results
        return MessageListResponse(
            messages=[MessageRef(id=i, threadId=self.messages[i].thread_id) for i in ids[start:end]],
            nextPageToken=str(end) if end < len(ids) else None,
            resultSizeEstimate=len(ids),
        )

    async def batch_get_messages(self, ids: list[str], format: str = "metadata") -> list[GmailMessage]:
        self.fetched_ids.extend(ids)
        return [self.messages[i] for i in ids if i in self.messages]

    async def get_profile(self) -> GmailProfile:
        return GmailProfile(emailAddress="me@example.com", messagesTotal=len(self.messages), historyId=self.history_id)

    async def list_history(self, start_history_id: str, history_types: Any = None) -> HistoryResponse:
        self.history_calls.append(start_history_id)
        if not self.history_responses:
            raise NotFoundError("no history queued")
        response = self.history_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    """Manual clock plus an async sleep that advances it and records waits."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Provide settings pointing at a temporary database."""
    return Settings(
        database_path=tmp_path / "mail.sqlite3",
        gmail_token_path=tmp_path / "token.json",
        gmail_credentials_path=tmp_path / "credentials.json",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def store(settings: Settings) -> MailStore:
    store = MailStore(settings.database_path)
    store.initialize()
    return store


@pytest.fixture
def make_message() -> Callable[..., dict[str, Any]]:
    return message_json


@pytest.fixture
def fake_gmail_factory() -> Callable[..., FakeGmail]:
    return FakeGmail


@pytest.fixture
def mailbox_120() -> FakeGmail:
    """A mailbox of 120 messages from three sender domains."""
    domains = ["example.com", "news.example.org", "shop.example.net"]
    return FakeGmail(
        [
            message_json(
                f"m{i:03d}",
                sender=f"Sender {i} <user{i}@{domains[i % 3]}>",
                internal_date=1_700_000_000_000 + i * 1000,
                labels=("INBOX", "UNREAD") if i % 2 else ("INBOX",),
            )
            for i in range(120)
        ]
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_email_data() -> dict[str, Any]:
    """Provide a sample Gmail message with a nested attachment."""
    return {
        "id": "msg123456",
        "threadId": "thread789",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "Weekly Newsletter - Python Tips",
        "internalDate": "1700000000000",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "Subject", "value": "Weekly Newsletter - Python Tips"},
                {"name": "From", "value": "Python Weekly <newsletter@Python.org>"},
                {"name": "To", "value": "user@example.com, Other <other@example.com>"},
            ],
            "parts": [
                {
                    "partId": "0",
                    "mimeType": "multipart/alternative",
                    "parts": [
                        {"partId": "0.0", "mimeType": "text/plain", "body": {"size": 5, "data": encode_body("Hello")}},
                        {
                            "partId": "0.1",
                            "mimeType": "text/html",
                            "body": {"size": 12, "data": encode_body("<p>Hello</p>")},
                        },
                    ],
                },
                {
                    "partId": "1",
                    "mimeType": "application/pdf",
                    "filename": "tips.pdf",
                    "headers": [{"name": "Content-Disposition", "value": "attachment; filename=tips.pdf"}],
                    "body": {"size": 2048, "attachmentId": "ATT1"},
                },
            ],
        },
    }
