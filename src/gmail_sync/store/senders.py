"""Per-domain sender statistics derived from the message cache."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

import structlog

from gmail_sync.models import MessageRecord
from gmail_sync.store.mail_store import MailStore, iso_utc
from gmail_sync.utils import utcnow

logger = structlog.get_logger()


@dataclass(frozen=True)
class SenderStats:
    """Aggregate stats for a single sender domain."""

    domain: str
    total_messages: int
    unread_messages: int
    last_message_at: datetime | None


class SenderStatsRepository:
    """Keeps the ``senders`` table in line with the ``messages`` table.

    Counts are always recomputed from the cached messages, never
    incremented, so repeated updates for the same batch are harmless.
    """

    def __init__(self, store: MailStore) -> None:
        self._store = store

    def rebuild_all_from_store(self) -> int:
        """Recompute stats for every domain; domains with no messages left are dropped.

        Returns:
            Number of domains with stats after the rebuild.
        """

        now_iso = iso_utc(utcnow())
        with self._store.connection() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            conn.execute("DELETE FROM senders;")
            conn.execute(
                """
                INSERT INTO senders (
                    domain, total_messages, unread_messages, last_message_at_iso, updated_at_iso
                )
                SELECT sender_domain, COUNT(*), SUM(is_unread), MAX(date_iso), ?
                FROM messages
                WHERE sender_domain != ''
                GROUP BY sender_domain;
                """,
                (now_iso,),
            )
            (domains,) = conn.execute("SELECT COUNT(*) FROM senders;").fetchone()
            conn.commit()

        logger.info("sender_stats_rebuilt", domains=domains)
        return int(domains)

    def update_for_domains(self, records: Iterable[MessageRecord]) -> int:
        """Recount the domains touched by ``records``.

        Returns:
            Number of domains updated.
        """

        domains = sorted({r.sender_domain for r in records if r.sender_domain})
        if not domains:
            return 0

        now_iso = iso_utc(utcnow())
        with self._store.connection() as conn:
            for domain in domains:
                total, unread, last_iso = conn.execute(
                    """
                    SELECT COUNT(*), SUM(is_unread), MAX(date_iso)
                    FROM messages
                    WHERE sender_domain = ?;
                    """,
                    (domain,),
                ).fetchone()

                if not total:
                    conn.execute("DELETE FROM senders WHERE domain = ?;", (domain,))
                    continue

                conn.execute(
                    """
                    INSERT INTO senders (
                        domain, total_messages, unread_messages, last_message_at_iso, updated_at_iso
                    )
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(domain) DO UPDATE SET
                        total_messages=excluded.total_messages,
                        unread_messages=excluded.unread_messages,
                        last_message_at_iso=excluded.last_message_at_iso,
                        updated_at_iso=excluded.updated_at_iso
                    """,
                    (domain, int(total), int(unread or 0), last_iso, now_iso),
                )
            conn.commit()

        logger.debug("sender_stats_updated", domains=len(domains))
        return len(domains)

    def get(self, domain: str) -> SenderStats | None:
        with self._store.connection() as conn:
            row = conn.execute(
                """
                SELECT domain, total_messages, unread_messages, last_message_at_iso
                FROM senders
                WHERE domain = ?;
                """,
                (domain.lower(),),
            ).fetchone()
        return self._row_to_stats(row) if row else None

    def top_senders(self, limit: int = 20) -> list[SenderStats]:
        """Return sender domains by message count, largest first."""

        with self._store.connection() as conn:
            rows = conn.execute(
                """
                SELECT domain, total_messages, unread_messages, last_message_at_iso
                FROM senders
                ORDER BY total_messages DESC, domain
                LIMIT ?;
                """,
                (limit,),
            ).fetchall()

        return [self._row_to_stats(row) for row in rows]

    def _row_to_stats(self, row: sqlite3.Row) -> SenderStats:
        return SenderStats(
            domain=row[0],
            total_messages=int(row[1] or 0),
            unread_messages=int(row[2] or 0),
            last_message_at=datetime.fromisoformat(row[3]) if row[3] else None,
        )
