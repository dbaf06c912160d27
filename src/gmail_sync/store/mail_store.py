"""SQLite-backed local mail cache.

The store keeps one row per remote message plus a small key/value table for
sync bookkeeping. Every public write is a single transaction: a batch upsert
or delete either lands completely or not at all.

The read flag is never written independently; ``is_unread`` is always
derived from the label set of the record being written.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

import structlog

from gmail_sync.exceptions import StoreError
from gmail_sync.models import UNREAD_LABEL, MessageRecord
from gmail_sync.utils import chunked, utcnow

logger = structlog.get_logger()


_SCHEMA_VERSION = 1

# Stay well below SQLite's host-parameter limit in IN (...) clauses.
_MAX_IN_PARAMS = 500

_MESSAGE_COLUMNS = """
    id,
    thread_id,
    subject,
    snippet,
    sender,
    sender_domain,
    recipients_json,
    date_iso,
    label_ids_json,
    is_unread,
    has_attachments,
    raw_payload,
    created_at_iso,
    updated_at_iso
"""


def iso_utc(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class MailStore:
    """Repository for cached messages and sync state."""

    def __init__(self, db_path: Path) -> None:
        """Create a store.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = db_path

    @property
    def db_path(self) -> Path:
        return self._db_path

    def initialize(self) -> None:
        """Create the schema, or check that an existing one is current.

        Raises:
            StoreError: If the database cannot be opened or has an
                unsupported schema version.
        """

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("mail_store_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise StoreError(
                    f"Unsupported schema version {current_version}; expected {_SCHEMA_VERSION}"
                )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def get(self, message_id: str) -> MessageRecord | None:
        with self.connection() as conn:
            row = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?;",
                (message_id,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def upsert_all(self, records: Iterable[MessageRecord]) -> int:
        """Insert or replace records in one transaction.

        ``created_at`` of rows that already exist is kept.

        Returns:
            Number of records written.
        """

        rows = [self._record_params(r) for r in records]
        if not rows:
            return 0

        with self.connection() as conn:
            conn.executemany(
                f"""
                INSERT INTO messages ({_MESSAGE_COLUMNS})
                VALUES (
                    :id,
                    :thread_id,
                    :subject,
                    :snippet,
                    :sender,
                    :sender_domain,
                    :recipients_json,
                    :date_iso,
                    :label_ids_json,
                    :is_unread,
                    :has_attachments,
                    :raw_payload,
                    :created_at_iso,
                    :updated_at_iso
                )
                ON CONFLICT(id) DO UPDATE SET
                    thread_id=excluded.thread_id,
                    subject=excluded.subject,
                    snippet=excluded.snippet,
                    sender=excluded.sender,
                    sender_domain=excluded.sender_domain,
                    recipients_json=excluded.recipients_json,
                    date_iso=excluded.date_iso,
                    label_ids_json=excluded.label_ids_json,
                    is_unread=excluded.is_unread,
                    has_attachments=excluded.has_attachments,
                    raw_payload=COALESCE(excluded.raw_payload, messages.raw_payload),
                    updated_at_iso=excluded.updated_at_iso
                """,
                rows,
            )
            conn.commit()

        logger.debug("mail_store_upserted", count=len(rows))
        return len(rows)

    def delete_all(self, message_ids: Iterable[str]) -> int:
        """Delete messages (and their attachment rows) in one transaction.

        Returns:
            Number of message rows removed.
        """

        ids = list(dict.fromkeys(message_ids))
        if not ids:
            return 0

        deleted = 0
        with self.connection() as conn:
            for chunk in chunked(ids, _MAX_IN_PARAMS):
                marks = ",".join("?" * len(chunk))
                conn.execute(f"DELETE FROM attachments WHERE message_id IN ({marks});", chunk)
                cursor = conn.execute(f"DELETE FROM messages WHERE id IN ({marks});", chunk)
                deleted += cursor.rowcount
            conn.commit()

        logger.debug("mail_store_deleted", requested=len(ids), deleted=deleted)
        return deleted

    def filter(self, predicate: Callable[[MessageRecord], bool]) -> list[MessageRecord]:
        """Return every record matching ``predicate``, newest first."""
        return [record for record in self._select("", ()) if predicate(record)]

    def fetch_by_thread(self, thread_id: str) -> list[MessageRecord]:
        return self._select("WHERE thread_id = ?", (thread_id,))

    def fetch_by_domain(self, domain: str, limit: int | None = None) -> list[MessageRecord]:
        return self._select("WHERE sender_domain = ?", (domain.lower(),), limit=limit)

    def fetch_unread(self, limit: int | None = None) -> list[MessageRecord]:
        return self._select("WHERE is_unread = 1", (), limit=limit)

    def count(self) -> int:
        with self.connection() as conn:
            (total,) = conn.execute("SELECT COUNT(*) FROM messages;").fetchone()
        return int(total or 0)

    def count_unread(self) -> int:
        with self.connection() as conn:
            (unread,) = conn.execute("SELECT COUNT(*) FROM messages WHERE is_unread = 1;").fetchone()
        return int(unread or 0)

    def mark_read(self, message_ids: Iterable[str], is_read: bool) -> int:
        """Set the read state of cached messages.

        Adds or removes the UNREAD label; the read flag follows from it.
        """
        if is_read:
            return self.apply_label_changes(message_ids, remove=[UNREAD_LABEL])
        return self.apply_label_changes(message_ids, add=[UNREAD_LABEL])

    def apply_label_changes(
        self,
        message_ids: Iterable[str],
        add: Iterable[str] = (),
        remove: Iterable[str] = (),
    ) -> int:
        """Add/remove labels on cached messages in one transaction.

        Unknown ids are ignored.

        Returns:
            Number of records updated.
        """

        ids = list(dict.fromkeys(message_ids))
        add = list(add)
        remove = list(remove)
        if not ids:
            return 0

        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            updated: list[MessageRecord] = []
            for chunk in chunked(ids, _MAX_IN_PARAMS):
                marks = ",".join("?" * len(chunk))
                rows = conn.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id IN ({marks});",
                    chunk,
                ).fetchall()
                updated.extend(self._row_to_record(row).with_labels(add, remove) for row in rows)

            conn.executemany(
                """
                UPDATE messages
                SET label_ids_json = :label_ids_json,
                    is_unread = :is_unread,
                    updated_at_iso = :updated_at_iso
                WHERE id = :id
                """,
                [self._record_params(r) for r in updated],
            )
            conn.commit()

        return len(updated)

    # ------------------------------------------------------------------
    # Sync state (key/value)
    # ------------------------------------------------------------------

    def get_state(self, key: str) -> str | None:
        with self.connection() as conn:
            row = conn.execute("SELECT value FROM sync_state WHERE key = ?;", (key,)).fetchone()
        return row[0] if row else None

    def set_state(self, key: str, value: str) -> None:
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (key, value, updated_at_iso) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at_iso=excluded.updated_at_iso
                """,
                (key, value, iso_utc(utcnow())),
            )
            conn.commit()

    def delete_state(self, key: str) -> None:
        with self.connection() as conn:
            conn.execute("DELETE FROM sync_state WHERE key = ?;", (key,))
            conn.commit()

    def clear_state(self) -> None:
        with self.connection() as conn:
            conn.execute("DELETE FROM sync_state;")
            conn.commit()
        logger.info("mail_store_state_cleared")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection; uncommitted work is rolled back on close."""
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open mail store at {self._db_path}: {exc}") from exc
        try:
            conn.row_factory = sqlite3.Row
            yield conn
        finally:
            conn.close()

    def _select(
        self,
        where: str,
        params: tuple[object, ...],
        limit: int | None = None,
    ) -> list[MessageRecord]:
        sql = f"SELECT {_MESSAGE_COLUMNS} FROM messages {where} ORDER BY date_iso DESC, id"
        if limit is not None:
            sql += " LIMIT ?"
            params = (*params, limit)
        with self.connection() as conn:
            rows = conn.execute(sql + ";", params).fetchall()
        return [self._row_to_record(row) for row in rows]

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                thread_id TEXT NOT NULL,
                subject TEXT NOT NULL,
                snippet TEXT NOT NULL,
                sender TEXT NOT NULL,
                sender_domain TEXT NOT NULL,
                recipients_json TEXT NOT NULL,
                date_iso TEXT NOT NULL,
                label_ids_json TEXT NOT NULL,
                is_unread INTEGER NOT NULL,
                has_attachments INTEGER NOT NULL,
                raw_payload BLOB,
                created_at_iso TEXT NOT NULL,
                updated_at_iso TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id);
            CREATE INDEX IF NOT EXISTS idx_messages_domain ON messages(sender_domain);
            CREATE INDEX IF NOT EXISTS idx_messages_date ON messages(date_iso);
            CREATE INDEX IF NOT EXISTS idx_messages_unread ON messages(is_unread);

            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at_iso TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS senders (
                domain TEXT PRIMARY KEY,
                total_messages INTEGER NOT NULL,
                unread_messages INTEGER NOT NULL,
                last_message_at_iso TEXT,
                updated_at_iso TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS attachments (
                id TEXT PRIMARY KEY,
                message_id TEXT NOT NULL,
                attachment_id TEXT NOT NULL,
                filename TEXT NOT NULL,
                mime_type TEXT,
                size INTEGER NOT NULL,
                created_at_iso TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_attachments_message ON attachments(message_id);
            """
        )

    def _record_params(self, record: MessageRecord) -> dict[str, object]:
        return {
            "id": record.id,
            "thread_id": record.thread_id,
            "subject": record.subject,
            "snippet": record.snippet,
            "sender": record.sender,
            "sender_domain": record.sender_domain,
            "recipients_json": json.dumps(record.recipients),
            "date_iso": iso_utc(record.date),
            "label_ids_json": json.dumps(sorted(record.label_ids)),
            "is_unread": 0 if record.is_read else 1,
            "has_attachments": 1 if record.has_attachments else 0,
            "raw_payload": record.raw_payload,
            "created_at_iso": iso_utc(record.created_at),
            "updated_at_iso": iso_utc(record.updated_at),
        }

    def _row_to_record(self, row: sqlite3.Row) -> MessageRecord:
        return MessageRecord(
            id=row["id"],
            thread_id=row["thread_id"],
            subject=row["subject"],
            snippet=row["snippet"],
            sender=row["sender"],
            sender_domain=row["sender_domain"],
            recipients=json.loads(row["recipients_json"]),
            date=datetime.fromisoformat(row["date_iso"]),
            label_ids=frozenset(json.loads(row["label_ids_json"])),
            has_attachments=bool(row["has_attachments"]),
            raw_payload=row["raw_payload"],
            created_at=datetime.fromisoformat(row["created_at_iso"]),
            updated_at=datetime.fromisoformat(row["updated_at_iso"]),
        )
