"""Quota-aware Gmail REST client.

This module provides an async client for the Gmail v1 REST API built on
``httpx``. Every call first spends its quota cost from a token bucket, then
obtains a fresh bearer token, then interprets the HTTP status:

- 2xx returns the JSON body
- 401/403/404 raise typed errors immediately
- 429/500/503 are retried with exponential backoff plus jitter, and raise
  ``RateLimitedError`` once the retry ceiling is hit
- anything else raises ``GmailAPIError`` carrying the status and body

Network-layer exceptions from ``httpx`` are not wrapped; the sync layer
decides what to do with them.

Notes:
    Batch helpers fan out single-item calls in bounded-concurrency chunks and
    collect partial results: an item that fails on its own (not found,
    unexpected API error, unparsable body) is logged and skipped. Failures
    that would hit every sibling as well (auth, exhausted rate limiting,
    transport errors) abort the whole batch so callers never record progress
    past messages they did not fetch.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import httpx
import structlog

from gmail_sync.config import Settings
from gmail_sync.exceptions import (
    AuthenticationError,
    ForbiddenError,
    GmailAPIError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
)
from gmail_sync.gmail.auth import TokenProvider
from gmail_sync.gmail.quota import Sleep, TokenBucket
from gmail_sync.models import (
    GmailLabel,
    GmailMessage,
    GmailProfile,
    HistoryRecord,
    HistoryResponse,
    MailboxStats,
    MessageListResponse,
)
from gmail_sync.utils import chunked, decode_base64url

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")

RETRYABLE_STATUSES = frozenset({429, 500, 503})
DEFAULT_HISTORY_TYPES: tuple[str, ...] = (
    "messageAdded",
    "messageDeleted",
    "labelAdded",
    "labelRemoved",
)

# Failures that would repeat for every item of a batch.
_BATCH_FATAL = (AuthenticationError, UnauthorizedError, RateLimitedError, httpx.TransportError)


class GmailClient:
    """Gmail API client for mailbox synchronization.

    One client owns one quota bucket; share the client rather than creating
    several for the same mailbox.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        bucket: TokenBucket | None = None,
        sleep: Sleep = asyncio.sleep,
        jitter: Callable[[], float] | None = None,
    ) -> None:
        """Initialize Gmail client.

        Args:
            token_provider: Source of bearer tokens, asked before every request.
            settings: Application settings. If None, uses default settings.
            http_client: Optional pre-configured httpx client. When omitted the
                client creates (and closes) its own.
            bucket: Optional quota bucket; defaults to one sized from settings.
            sleep: Coroutine used for retry and inter-chunk delays.
            jitter: Returns the random jitter added to retry delays.
        """
        from gmail_sync.config import get_settings

        self.settings = settings or get_settings()
        self._tokens = token_provider
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.settings.http_timeout_seconds)
        self._sleep = sleep
        self._jitter = jitter or (lambda: random.uniform(0.0, 1.0))
        self.bucket = bucket or TokenBucket(
            self.settings.quota_capacity,
            self.settings.quota_refill_rate,
            sleep=sleep,
        )
        self._costs = self.settings.quota_costs
        self._base_url = f"{self.settings.gmail_api_base_url.rstrip('/')}/{self.settings.gmail_user_id}"
        logger.info("gmail_client_initialized", base_url=self._base_url)

    async def __aenter__(self) -> GmailClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def get_profile(self) -> GmailProfile:
        await self.bucket.consume(self._costs.profile)
        data = await self._request("GET", "/profile")
        return GmailProfile.model_validate(data)

    async def get_mailbox_stats(self) -> MailboxStats:
        """Total, inbox and unread counts in three cheap sequential calls."""
        profile = await self.get_profile()
        inbox = await self.get_label("INBOX")
        unread = await self.get_label("UNREAD")

        return MailboxStats(
            email_address=profile.email_address,
            total_messages=profile.messages_total or 0,
            total_threads=profile.threads_total or 0,
            inbox_messages=inbox.messages_total or 0,
            inbox_unread=inbox.messages_unread or 0,
            total_unread=unread.messages_total or 0,
            history_id=profile.history_id,
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def list_messages(
        self,
        max_results: int = 100,
        page_token: str | None = None,
        label_ids: Sequence[str] | None = None,
        query: str | None = None,
        include_spam_trash: bool = False,
    ) -> MessageListResponse:
        """List one page of message references.

        Args:
            max_results: Page size (capped at 500 by Gmail).
            page_token: Continuation cursor from a previous page.
            label_ids: Only return messages carrying ALL of these labels.
            query: Gmail search query string.
            include_spam_trash: Include SPAM and TRASH messages.
        """
        await self.bucket.consume(self._costs.list)

        params: dict[str, Any] = {"maxResults": min(max_results, 500)}
        if page_token:
            params["pageToken"] = page_token
        if label_ids:
            params["labelIds"] = list(label_ids)
        if query:
            params["q"] = query
        if include_spam_trash:
            params["includeSpamTrash"] = "true"

        data = await self._request("GET", "/messages", params=params)
        return MessageListResponse.model_validate(data)

    async def get_message(self, message_id: str, format: str = "metadata") -> GmailMessage:
        await self.bucket.consume(self._costs.get)
        data = await self._request("GET", f"/messages/{message_id}", params={"format": format})
        return GmailMessage.model_validate(data)

    async def batch_get_messages(
        self,
        ids: Sequence[str],
        format: str = "metadata",
    ) -> list[GmailMessage]:
        """Fetch many messages with bounded concurrency.

        Messages that vanished remotely (404) or failed individually are
        skipped; the result keeps input order for the rest.
        """
        return await self._fan_out(
            list(ids),
            lambda message_id: self.get_message(message_id, format=format),
            concurrency=self.settings.message_batch_concurrency,
            delay=self.settings.message_batch_delay_seconds,
            operation="get_message",
        )

    async def get_attachment(self, message_id: str, attachment_id: str) -> bytes:
        await self.bucket.consume(self._costs.get)
        data = await self._request("GET", f"/messages/{message_id}/attachments/{attachment_id}")
        encoded = data.get("data")
        if not isinstance(encoded, str):
            raise GmailAPIError(200, "attachment response has no data")
        return decode_base64url(encoded)

    async def batch_get_attachments(
        self,
        message_id: str,
        attachment_ids: Sequence[str],
    ) -> dict[str, bytes]:
        ids = list(attachment_ids)

        async def fetch(attachment_id: str) -> tuple[str, bytes]:
            return attachment_id, await self.get_attachment(message_id, attachment_id)

        pairs = await self._fan_out(
            ids,
            fetch,
            concurrency=self.settings.attachment_batch_concurrency,
            delay=self.settings.attachment_batch_delay_seconds,
            operation="get_attachment",
        )
        return dict(pairs)

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    async def list_labels(self) -> list[GmailLabel]:
        """List all labels (basic info only, no counts)."""
        await self.bucket.consume(self._costs.label)
        data = await self._request("GET", "/labels")
        return [GmailLabel.model_validate(item) for item in data.get("labels", []) or []]

    async def get_label(self, label_id: str) -> GmailLabel:
        await self.bucket.consume(self._costs.label)
        data = await self._request("GET", f"/labels/{label_id}")
        return GmailLabel.model_validate(data)

    async def get_all_labels_with_counts(self) -> list[GmailLabel]:
        """Return every label with message counts, largest first."""
        basic = await self.list_labels()
        detailed = await self._fan_out(
            [label.id for label in basic],
            self.get_label,
            concurrency=self.settings.label_batch_concurrency,
            delay=self.settings.label_batch_delay_seconds,
            operation="get_label",
        )
        return sorted(detailed, key=lambda label: label.messages_total or 0, reverse=True)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def modify_message(
        self,
        message_id: str,
        add_label_ids: Sequence[str] = (),
        remove_label_ids: Sequence[str] = (),
    ) -> None:
        await self.bucket.consume(self._costs.modify)
        await self._request(
            "POST",
            f"/messages/{message_id}/modify",
            json={"addLabelIds": list(add_label_ids), "removeLabelIds": list(remove_label_ids)},
        )

    async def batch_modify(
        self,
        ids: Sequence[str],
        add_label_ids: Sequence[str] = (),
        remove_label_ids: Sequence[str] = (),
    ) -> int:
        """Apply label changes to many messages.

        Gmail accepts at most ``batch_modify_max_ids`` ids per call, so the ids
        are split into ceil(len(ids) / max) calls.

        Returns:
            The number of remote calls issued.
        """
        if not ids:
            return 0

        chunks = chunked(list(ids), self.settings.batch_modify_max_ids)
        for index, chunk in enumerate(chunks):
            await self.bucket.consume(self._costs.batch_modify)
            await self._request(
                "POST",
                "/messages/batchModify",
                json={
                    "ids": chunk,
                    "addLabelIds": list(add_label_ids),
                    "removeLabelIds": list(remove_label_ids),
                },
            )
            logger.info(
                "batch_modify_chunk_done",
                chunk=index + 1,
                chunks=len(chunks),
                message_count=len(chunk),
            )
            if index < len(chunks) - 1:
                await self._sleep(self.settings.batch_modify_delay_seconds)

        logger.info("batch_modify_done", message_count=len(ids), chunks=len(chunks))
        return len(chunks)

    async def trash_message(self, message_id: str) -> None:
        await self.bucket.consume(self._costs.trash)
        await self._request("POST", f"/messages/{message_id}/trash")

    async def archive_messages(self, ids: Sequence[str]) -> int:
        return await self.batch_modify(ids, remove_label_ids=["INBOX"])

    async def mark_as_read(self, ids: Sequence[str]) -> int:
        return await self.batch_modify(ids, remove_label_ids=["UNREAD"])

    async def mark_as_unread(self, ids: Sequence[str]) -> int:
        return await self.batch_modify(ids, add_label_ids=["UNREAD"])

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def list_history(
        self,
        start_history_id: str,
        history_types: Sequence[str] = DEFAULT_HISTORY_TYPES,
    ) -> HistoryResponse:
        """Fetch every change since ``start_history_id``.

        All result pages are followed and merged; the returned ``history_id``
        is the one reported by the last page.

        Raises:
            NotFoundError: When the start id is older than Gmail's retention.
        """
        records: list[HistoryRecord] = []
        page_token: str | None = None
        latest: HistoryResponse | None = None

        while True:
            await self.bucket.consume(self._costs.history)
            params: dict[str, Any] = {
                "startHistoryId": start_history_id,
                "historyTypes": list(history_types),
            }
            if page_token:
                params["pageToken"] = page_token

            data = await self._request("GET", "/history", params=params)
            latest = HistoryResponse.model_validate(data)
            records.extend(latest.history)

            page_token = latest.next_page_token
            if not page_token:
                break

        return HistoryResponse(history=records, historyId=latest.history_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = self._base_url + endpoint
        max_retries = self.settings.max_retries

        for retry in range(max_retries + 1):
            token = await self._tokens.get_valid_access_token()
            response = await self._http.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
            status = response.status_code

            if 200 <= status < 300:
                return response.json() if response.content else {}
            if status == 401:
                raise UnauthorizedError(response.text)
            if status == 403:
                raise ForbiddenError(response.text)
            if status == 404:
                raise NotFoundError(response.text)
            if status in RETRYABLE_STATUSES:
                if retry >= max_retries:
                    logger.error("gmail_retries_exhausted", endpoint=endpoint, status=status)
                    raise RateLimitedError(status, response.text)

                delay = self.settings.retry_base_delay_seconds * (2**retry) + self._jitter()
                logger.warning(
                    "gmail_request_retry",
                    endpoint=endpoint,
                    status=status,
                    retry=retry + 1,
                    max_retries=max_retries,
                    delay_seconds=round(delay, 2),
                )
                await self._sleep(delay)
                continue

            logger.error("gmail_api_error", endpoint=endpoint, status=status, body=response.text)
            raise GmailAPIError(status, response.text)

        raise RateLimitedError()

    async def _fan_out(
        self,
        items: list[T],
        call: Callable[[T], Awaitable[R]],
        *,
        concurrency: int,
        delay: float,
        operation: str,
    ) -> list[R]:
        results: list[R] = []
        chunks = chunked(items, concurrency)

        for index, chunk in enumerate(chunks):
            outcomes = await asyncio.gather(*(call(item) for item in chunk), return_exceptions=True)

            for item, outcome in zip(chunk, outcomes):
                if isinstance(outcome, _BATCH_FATAL) or not isinstance(outcome, Exception):
                    if isinstance(outcome, BaseException):
                        raise outcome
                    results.append(outcome)
                    continue

                if isinstance(outcome, NotFoundError):
                    logger.info("batch_item_missing", operation=operation, item=item)
                else:
                    logger.warning(
                        "batch_item_failed",
                        operation=operation,
                        item=item,
                        error=str(outcome),
                    )

            if index < len(chunks) - 1:
                await self._sleep(delay)

        return results
