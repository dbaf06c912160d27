"""Unit tests for the SQLite mail store."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

import pytest

from gmail_sync.exceptions import StoreError
from gmail_sync.gmail.parsing import extract_attachments
from gmail_sync.models import GmailMessage, MessageRecord
from gmail_sync.store import AttachmentRepository, MailStore, SenderStatsRepository


def _record(
    message_id: str,
    *,
    domain: str = "example.com",
    labels: tuple[str, ...] = ("INBOX", "UNREAD"),
    thread_id: str = "t1",
    day: int = 1,
) -> MessageRecord:
    return MessageRecord(
        id=message_id,
        thread_id=thread_id,
        subject=f"Subject {message_id}",
        sender=f"Someone <someone@{domain}>",
        sender_domain=domain,
        recipients=["me@example.com"],
        date=datetime(2025, 1, day, tzinfo=timezone.utc),
        label_ids=frozenset(labels),
    )


class TestMailStore:
    """Test suite for message persistence."""

    def test_initialize_is_idempotent(self, store: MailStore) -> None:
        store.initialize()

        assert store.count() == 0

    def test_unsupported_schema_version_raises(self, store: MailStore) -> None:
        with sqlite3.connect(store.db_path) as conn:
            conn.execute("UPDATE _schema_meta SET value = '99' WHERE key = 'schema_version'")

        with pytest.raises(StoreError):
            store.initialize()

    def test_upsert_and_get_round_trip(self, store: MailStore) -> None:
        record = _record("m1").model_copy(update={"raw_payload": b"raw"})

        assert store.upsert_all([record]) == 1
        loaded = store.get("m1")

        assert loaded is not None
        assert loaded.subject == "Subject m1"
        assert loaded.label_ids == frozenset({"INBOX", "UNREAD"})
        assert loaded.recipients == ["me@example.com"]
        assert loaded.date == record.date
        assert loaded.raw_payload == b"raw"
        assert store.get("missing") is None

    def test_upsert_replaces_fields_but_keeps_created_at(self, store: MailStore) -> None:
        first = _record("m1").model_copy(
            update={"created_at": datetime(2020, 1, 1, tzinfo=timezone.utc)}
        )
        store.upsert_all([first])

        second = _record("m1", labels=("INBOX",)).model_copy(update={"subject": "Edited"})
        store.upsert_all([second])

        loaded = store.get("m1")
        assert loaded is not None
        assert loaded.subject == "Edited"
        assert loaded.is_read is True
        assert loaded.created_at == datetime(2020, 1, 1, tzinfo=timezone.utc)
        assert store.count() == 1

    def test_failed_upsert_writes_nothing(self, store: MailStore) -> None:
        store.upsert_all([_record("m1")])
        with store.connection() as conn:
            conn.execute(
                """
                CREATE TRIGGER reject_bad BEFORE INSERT ON messages
                WHEN new.id = 'bad' BEGIN SELECT RAISE(ABORT, 'rejected'); END;
                """
            )
            conn.commit()

        with pytest.raises(sqlite3.DatabaseError):
            store.upsert_all([_record("m2"), _record("bad"), _record("m3")])

        assert store.count() == 1
        assert store.get("m2") is None

    @pytest.mark.asyncio
    async def test_delete_all_removes_messages_and_attachments(self, store: MailStore, make_message) -> None:
        store.upsert_all([_record("m1"), _record("m2"), _record("m3")])
        attachments = AttachmentRepository(store)
        message = GmailMessage.model_validate(make_message("m1", with_attachment=True))

        await attachments.process_message_attachments(message.id, extract_attachments(message))
        assert len(attachments.for_message("m1")) == 1

        deleted = store.delete_all(["m1", "m2", "unknown", "m1"])

        assert deleted == 2
        assert [r.id for r in store.filter(lambda r: True)] == ["m3"]
        assert attachments.for_message("m1") == []

    def test_queries(self, store: MailStore) -> None:
        store.upsert_all(
            [
                _record("m1", domain="a.com", thread_id="t1", day=1),
                _record("m2", domain="a.com", thread_id="t1", day=2, labels=("INBOX",)),
                _record("m3", domain="b.com", thread_id="t2", day=3),
            ]
        )

        assert [r.id for r in store.fetch_by_thread("t1")] == ["m2", "m1"]
        assert [r.id for r in store.fetch_by_domain("A.com")] == ["m2", "m1"]
        assert [r.id for r in store.fetch_unread()] == ["m3", "m1"]
        assert [r.id for r in store.fetch_unread(limit=1)] == ["m3"]
        assert [r.id for r in store.filter(lambda r: r.sender_domain == "b.com")] == ["m3"]
        assert store.count() == 3
        assert store.count_unread() == 2


class TestReadStateConsistency:
    """is_read always equals "UNREAD" not in labels after every mutation."""

    def _assert_consistent(self, store: MailStore) -> None:
        with store.connection() as conn:
            rows = conn.execute("SELECT id, label_ids_json, is_unread FROM messages").fetchall()
        for row in rows:
            assert bool(row["is_unread"]) == ('"UNREAD"' in row["label_ids_json"])
        for record in store.filter(lambda r: True):
            assert record.is_read == ("UNREAD" not in record.label_ids)

    def test_mark_read_and_unread(self, store: MailStore) -> None:
        store.upsert_all([_record("m1"), _record("m2"), _record("m3", labels=("INBOX",))])

        assert store.mark_read(["m1", "m3"], True) == 2
        self._assert_consistent(store)
        assert store.count_unread() == 1

        store.mark_read(["m3"], False)
        self._assert_consistent(store)
        assert {r.id for r in store.fetch_unread()} == {"m2", "m3"}

    def test_apply_label_changes(self, store: MailStore) -> None:
        store.upsert_all([_record("m1"), _record("m2")])

        updated = store.apply_label_changes(["m1", "missing"], add=["STARRED"], remove=["UNREAD", "INBOX"])

        assert updated == 1
        loaded = store.get("m1")
        assert loaded is not None
        assert loaded.label_ids == frozenset({"STARRED"})
        assert loaded.is_read is True
        self._assert_consistent(store)

    def test_toggle_on_record_then_upsert(self, store: MailStore) -> None:
        store.upsert_all([_record("m1")])
        record = store.get("m1")
        assert record is not None

        store.upsert_all([record.with_read_state(True)])

        self._assert_consistent(store)
        assert store.count_unread() == 0


class TestSyncStateTable:
    """Test suite for the key/value sync state."""

    def test_set_get_delete(self, store: MailStore) -> None:
        assert store.get_state("k") is None

        store.set_state("k", "1")
        store.set_state("k", "2")
        assert store.get_state("k") == "2"

        store.delete_state("k")
        assert store.get_state("k") is None

    def test_clear_state(self, store: MailStore) -> None:
        store.set_state("a", "1")
        store.set_state("b", "2")

        store.clear_state()

        assert store.get_state("a") is None
        assert store.get_state("b") is None


class TestSenderStats:
    """Test suite for sender statistics."""

    def test_rebuild_counts_from_messages(self, store: MailStore) -> None:
        store.upsert_all(
            [
                _record("m1", domain="a.com", day=1),
                _record("m2", domain="a.com", day=5, labels=("INBOX",)),
                _record("m3", domain="b.com", day=3),
                _record("m4", domain=""),
            ]
        )
        senders = SenderStatsRepository(store)

        assert senders.rebuild_all_from_store() == 2

        top = senders.top_senders()
        assert [(s.domain, s.total_messages, s.unread_messages) for s in top] == [
            ("a.com", 2, 1),
            ("b.com", 1, 1),
        ]
        assert top[0].last_message_at == datetime(2025, 1, 5, tzinfo=timezone.utc)

    def test_rebuild_drops_domains_without_messages(self, store: MailStore) -> None:
        senders = SenderStatsRepository(store)
        store.upsert_all([_record("m1", domain="a.com")])
        senders.rebuild_all_from_store()

        store.delete_all(["m1"])
        senders.rebuild_all_from_store()

        assert senders.get("a.com") is None

    def test_update_for_domains_recounts_touched_domains(self, store: MailStore) -> None:
        senders = SenderStatsRepository(store)
        first = [_record("m1", domain="a.com"), _record("m2", domain="b.com")]
        store.upsert_all(first)
        senders.update_for_domains(first)

        second = [_record("m3", domain="a.com")]
        store.upsert_all(second)
        # Updating twice for the same batch must not double count.
        senders.update_for_domains(second)
        senders.update_for_domains(second)

        a = senders.get("A.COM")
        assert a is not None
        assert a.total_messages == 2
        b = senders.get("b.com")
        assert b is not None
        assert b.total_messages == 1


class TestAttachmentRepository:
    """Test suite for attachment metadata."""

    @pytest.mark.asyncio
    async def test_records_attachments_with_composite_id(self, store: MailStore, sample_email_data) -> None:
        repo = AttachmentRepository(store)
        infos = extract_attachments(GmailMessage.model_validate(sample_email_data))

        assert await repo.process_message_attachments("msg123456", infos) == 1
        # Re-processing replaces rather than duplicates.
        await repo.process_message_attachments("msg123456", infos)

        rows = repo.for_message("msg123456")
        assert len(rows) == 1
        assert rows[0].id == "msg123456_ATT1"
        assert rows[0].filename == "tips.pdf"
        assert rows[0].size == 2048

    @pytest.mark.asyncio
    async def test_empty_attachment_list_records_nothing(self, store: MailStore) -> None:
        repo = AttachmentRepository(store)

        assert await repo.process_message_attachments("m1", []) == 0
        assert repo.for_message("m1") == []
