"""Unit tests for the resumable full-sync engine."""

from __future__ import annotations

import pytest

from gmail_sync.exceptions import RateLimitedError, SyncCancelledError
from gmail_sync.models import AttachmentInfo, SyncPhase, SyncProgress
from gmail_sync.store import AttachmentRepository, MailStore, SenderStatsRepository
from gmail_sync.sync import CancellationToken, FullSyncEngine, SyncStateRepository


def _engine(gmail, store: MailStore, settings, **kwargs) -> FullSyncEngine:
    return FullSyncEngine(gmail, store, SyncStateRepository(store), settings, **kwargs)


class TestFullSync:
    """Test suite for an uninterrupted full sync."""

    @pytest.mark.asyncio
    async def test_empty_mailbox_completes_and_sets_checkpoint(
        self, store, settings, fake_gmail_factory
    ) -> None:
        gmail = fake_gmail_factory([], history_id="555")
        state = SyncStateRepository(store)

        outcome = await FullSyncEngine(gmail, store, state, settings).run()

        assert outcome.completed is True
        assert outcome.count == 0
        assert gmail.list_calls == [None]
        assert state.checkpoint() == "555"
        assert state.resumable_state() is None
        assert state.last_sync_time() is not None

    @pytest.mark.asyncio
    async def test_syncs_all_pages(self, store, settings, mailbox_120) -> None:
        senders = SenderStatsRepository(store)
        events: list[SyncProgress] = []

        outcome = await _engine(mailbox_120, store, settings, sender_stats=senders).run(events.append)

        assert outcome.completed is True
        assert outcome.count == 120
        assert mailbox_120.list_calls == [None, "50", "100"]
        assert store.count() == 120
        assert SyncStateRepository(store).checkpoint() == "1000"
        assert sum(s.total_messages for s in senders.top_senders()) == 120

        fetching = [e for e in events if e.phase is SyncPhase.FETCHING_MESSAGES]
        assert [e.current for e in fetching][-1] == 120
        assert all(e.total == 120 for e in fetching)

    @pytest.mark.asyncio
    async def test_message_vanishing_before_fetch_is_skipped(self, store, settings, mailbox_120) -> None:
        original = mailbox_120.batch_get_messages

        async def racy_fetch(ids, format="metadata"):
            # Listed, but deleted remotely before the fetch.
            messages = await original(ids, format=format)
            return [m for m in messages if m.id != "m010"]

        mailbox_120.batch_get_messages = racy_fetch

        outcome = await _engine(mailbox_120, store, settings).run()

        assert outcome.completed is True
        assert store.count() == 119
        assert store.get("m010") is None

    @pytest.mark.asyncio
    async def test_attachment_failures_do_not_abort(
        self, store, settings, fake_gmail_factory, make_message
    ) -> None:
        gmail = fake_gmail_factory([make_message(f"m{i}", with_attachment=True) for i in range(3)])

        class Exploding:
            async def process_message_attachments(self, message_id, attachments):
                raise RuntimeError("disk full")

        outcome = await _engine(gmail, store, settings, attachments=Exploding()).run()

        assert outcome.completed is True
        assert store.count() == 3

    @pytest.mark.asyncio
    async def test_attachments_are_recorded(self, store, settings, fake_gmail_factory, make_message) -> None:
        gmail = fake_gmail_factory([make_message("m1", with_attachment=True), make_message("m2")])
        attachments = AttachmentRepository(store)

        await _engine(gmail, store, settings, attachments=attachments).run()

        assert [a.id for a in attachments.for_message("m1")] == ["m1_att-m1"]
        assert attachments.for_message("m2") == []

    @pytest.mark.asyncio
    async def test_attachment_processor_only_sees_messages_with_attachments(
        self, store, settings, fake_gmail_factory, make_message
    ) -> None:
        gmail = fake_gmail_factory([make_message("m1", with_attachment=True), make_message("m2")])
        calls: list[tuple[str, list[AttachmentInfo]]] = []

        class Recording:
            async def process_message_attachments(self, message_id, attachments):
                calls.append((message_id, list(attachments)))

        await _engine(gmail, store, settings, attachments=Recording()).run()

        assert [message_id for message_id, _ in calls] == ["m1"]
        infos = calls[0][1]
        assert [info.attachment_id for info in infos] == ["att-m1"]
        assert infos[0].filename == "invoice.pdf"


class TestResumption:
    """Test suite for interrupted and resumed full syncs."""

    @pytest.mark.asyncio
    async def test_interrupt_after_page_two_resumes_with_page_three_only(
        self, store, settings, mailbox_120
    ) -> None:
        mailbox_120.fail_list_call = 3
        mailbox_120.list_error = RateLimitedError()
        state = SyncStateRepository(store)

        with pytest.raises(RateLimitedError):
            await _engine(mailbox_120, store, settings).run()

        saved = state.resumable_state()
        assert saved is not None
        assert saved.page_token == "100"
        assert saved.fetched_count == 100
        assert store.count() == 100
        assert state.checkpoint() is None

        mailbox_120.fail_list_call = None
        mailbox_120.fetched_ids.clear()
        events: list[SyncProgress] = []

        outcome = await _engine(mailbox_120, store, settings).run(events.append)

        assert events[0] == SyncProgress.resuming(100)
        assert len(mailbox_120.fetched_ids) == 20
        assert mailbox_120.fetched_ids[0] == "m100"
        assert outcome.completed is True
        assert outcome.count == 120
        assert store.count() == 120
        assert state.resumable_state() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("interrupt_after_pages", [0, 1, 2])
    async def test_resumed_sync_matches_uninterrupted_sync(
        self, tmp_path, settings, mailbox_120, interrupt_after_pages
    ) -> None:
        reference = MailStore(tmp_path / "reference.sqlite3")
        reference.initialize()
        await _engine(mailbox_120, reference, settings).run()

        mailbox_120.fail_list_call = interrupt_after_pages + 1
        mailbox_120.list_calls.clear()
        interrupted = MailStore(tmp_path / "interrupted.sqlite3")
        interrupted.initialize()
        with pytest.raises(RuntimeError):
            await _engine(mailbox_120, interrupted, settings).run()

        mailbox_120.fail_list_call = None
        outcome = await _engine(mailbox_120, interrupted, settings).run()

        assert outcome.completed is True
        expected = {r.id: r.model_dump(exclude={"created_at", "updated_at"}) for r in reference.filter(lambda r: True)}
        actual = {r.id: r.model_dump(exclude={"created_at", "updated_at"}) for r in interrupted.filter(lambda r: True)}
        assert actual == expected

    @pytest.mark.asyncio
    async def test_cancellation_saves_progress(self, store, settings, mailbox_120) -> None:
        cancel = CancellationToken()
        state = SyncStateRepository(store)

        def on_progress(event: SyncProgress) -> None:
            if event.phase is SyncPhase.FETCHING_MESSAGES and event.current == 75:
                cancel.cancel()

        with pytest.raises(SyncCancelledError):
            await _engine(mailbox_120, store, settings).run(on_progress, cancel)

        # Cancelled mid-page: the page is fetched again, nothing is lost.
        saved = state.resumable_state()
        assert saved is not None
        assert saved.page_token == "50"
        assert saved.fetched_count == 50
        assert store.count() == 75

        outcome = await _engine(mailbox_120, store, settings).run()

        assert outcome.completed is True
        assert store.count() == 120


class TestSessionLimits:
    """Test suite for per-invocation bounds."""

    @pytest.mark.asyncio
    async def test_pages_per_session_stops_with_resumable_state(self, store, settings, mailbox_120) -> None:
        limited = settings.model_copy(update={"pages_per_session": 1})
        state = SyncStateRepository(store)

        first = await _engine(mailbox_120, store, limited).run()

        assert first.completed is False
        assert first.count == 50
        assert store.count() == 50
        assert state.resumable_state().page_token == "50"

        await _engine(mailbox_120, store, limited).run()
        third = await _engine(mailbox_120, store, limited).run()

        assert third.completed is True
        assert store.count() == 120
        assert mailbox_120.list_calls == [None, "50", "100"]

    @pytest.mark.asyncio
    async def test_max_fetched_bounds_one_invocation(self, store, settings, mailbox_120) -> None:
        limited = settings.model_copy(update={"max_fetched": 60})

        outcome = await _engine(mailbox_120, store, limited).run()

        assert outcome.completed is False
        assert outcome.count == 100
        assert store.count() == 100

    @pytest.mark.asyncio
    async def test_cursor_never_points_past_stored_records(self, store, settings, mailbox_120) -> None:
        paced = settings.model_copy(update={"flush_every_pages": 2})
        state = SyncStateRepository(store)
        snapshots: list[tuple[int, str | None]] = []

        def on_progress(event: SyncProgress) -> None:
            if event.phase is SyncPhase.FETCHING_MESSAGES:
                saved = state.resumable_state()
                snapshots.append((store.count(), saved.page_token if saved else None))

        await _engine(mailbox_120, store, paced).run(on_progress)

        for stored, token in snapshots:
            assert stored >= int(token or 0)

    @pytest.mark.asyncio
    async def test_each_page_is_stored_and_checkpointed_before_the_next_list(
        self, store, settings, mailbox_120
    ) -> None:
        state = SyncStateRepository(store)
        original = mailbox_120.list_messages
        seen: list[tuple[str | None, int]] = []

        async def observing_list(*args, **kwargs):
            saved = state.resumable_state()
            seen.append((saved.page_token if saved else None, store.count()))
            return await original(*args, **kwargs)

        mailbox_120.list_messages = observing_list

        await _engine(mailbox_120, store, settings).run()

        assert settings.flush_every_pages > 2
        assert seen == [(None, 0), ("50", 50), ("100", 100)]

    @pytest.mark.asyncio
    async def test_state_at_any_fetch_covers_every_earlier_page(self, store, settings, mailbox_120) -> None:
        original = mailbox_120.batch_get_messages
        state = SyncStateRepository(store)
        snapshots: dict[str, tuple[str | None, int]] = {}

        async def observing_fetch(ids, format="metadata"):
            # What a process killed at this point would leave behind.
            saved = state.resumable_state()
            snapshots[ids[0]] = (saved.page_token, store.count())
            return await original(ids, format=format)

        mailbox_120.batch_get_messages = observing_fetch

        await _engine(mailbox_120, store, settings).run()

        assert snapshots["m075"] == ("50", 50)
        assert snapshots["m100"] == ("100", 100)
