"""Command-line interface for the Gmail sync engine."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import httpx
import structlog

from gmail_sync import __version__
from gmail_sync.config import Settings, get_settings
from gmail_sync.exceptions import GmailSyncError
from gmail_sync.gmail import GmailClient, GoogleTokenProvider, run_interactive_login
from gmail_sync.models import SyncProgress, SyncResultKind
from gmail_sync.store import AttachmentRepository, MailStore, SenderStatsRepository
from gmail_sync.sync import (
    ContinuousSyncDriver,
    ContinuousSyncState,
    SyncOrchestrator,
    SyncStateRepository,
)
from gmail_sync.utils import configure_logging

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gmail-sync", description="Gmail Sync Engine")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite mail cache (default: settings database_path)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("login", help="Authorize Gmail access and store the token file")

    sync_parser = subparsers.add_parser("sync", help="Run one sync session")
    mode = sync_parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--full",
        action="store_true",
        help="Discard checkpoints and run a full sync from scratch",
    )
    mode.add_argument(
        "--continuous",
        action="store_true",
        help="Keep running sessions until the mailbox is fully cached",
    )

    status_parser = subparsers.add_parser("status", help="Show sync state and cache stats")
    status_parser.add_argument("--top-senders", type=int, default=10, help="Number of top senders")

    subparsers.add_parser("reset", help="Clear all sync state; the next sync is a full sync")

    return parser


def _open_store(settings: Settings, db_path: Path | None) -> MailStore:
    store = MailStore(db_path or settings.database_path)
    store.initialize()
    return store


def _print_progress(event: SyncProgress) -> None:
    details = {
        key: value
        for key, value in event.model_dump(exclude={"phase"}).items()
        if value is not None
    }
    suffix = " ".join(f"{key}={value}" for key, value in details.items())
    print(f"[{event.phase.value}] {suffix}".rstrip())


def _cmd_login(settings: Settings) -> int:
    run_interactive_login(
        settings.gmail_credentials_path,
        settings.gmail_token_path,
        [settings.gmail_scope],
    )
    print(f"Saved Gmail token to {settings.gmail_token_path}")
    return 0


async def _cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(settings, args.db)
    tokens = GoogleTokenProvider(settings.gmail_token_path, [settings.gmail_scope])

    async with GmailClient(tokens, settings) as client:
        orchestrator = SyncOrchestrator(
            client,
            store,
            settings,
            attachments=AttachmentRepository(store),
            sender_stats=SenderStatsRepository(store),
        )

        if args.continuous:
            driver = ContinuousSyncDriver(orchestrator, settings, progress=_print_progress)
            report = await driver.run()
            print(f"Continuous sync {report.state.value} after {report.sessions} sessions")
            return 0 if report.state is ContinuousSyncState.COMPLETED else 1

        if args.full:
            result = await orchestrator.force_full_sync(_print_progress)
        else:
            result = await orchestrator.sync(_print_progress)

    if result.kind is SyncResultKind.FULL_SYNC:
        state = "complete" if result.completed else "in progress (run sync again to continue)"
        print(f"Full sync {state}: {result.count} messages listed")
    elif result.kind is SyncResultKind.NO_CHANGES:
        print("No changes")
    else:
        print(f"Synced: {result.added} added, {result.modified} modified, {result.deleted} deleted")
    return 0


def _cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(settings, args.db)
    senders = SenderStatsRepository(store)

    state = SyncStateRepository(store)
    resumable = state.resumable_state()
    last_sync = state.last_sync_time()

    print(f"Checkpoint: {state.checkpoint() or '(none)'}")
    print(f"Last sync: {last_sync.isoformat() if last_sync else '(never)'}")
    if resumable is not None:
        print(f"Full sync in progress: {resumable.fetched_count} messages listed so far")
    print(f"Cached messages: {store.count()}")
    print(f"Unread messages: {store.count_unread()}")

    print("\nTop senders:")
    for s in senders.top_senders(limit=args.top_senders):
        unread_rate = 0.0 if s.total_messages == 0 else s.unread_messages / s.total_messages
        print(f"- {s.domain}: {s.total_messages} messages ({unread_rate:.0%} unread)")

    return 0


def _cmd_reset(args: argparse.Namespace, settings: Settings) -> int:
    store = _open_store(settings, args.db)
    store.clear_state()
    print("Sync state cleared; the next sync will be a full sync")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the gmail-sync CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("gmail_sync_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    try:
        if parsed.command == "login":
            return _cmd_login(settings)
        if parsed.command == "sync":
            return asyncio.run(_cmd_sync(parsed, settings))
        if parsed.command == "status":
            return _cmd_status(parsed, settings)
        if parsed.command == "reset":
            return _cmd_reset(parsed, settings)
    except (GmailSyncError, httpx.TransportError) as exc:
        logger.error("gmail_sync_command_failed", command=parsed.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
