#!/usr/bin/env python3
"""
spire-sync - command line entry point for python -m spire_sync

Inspects and maintains a data directory: durable revision, queued
operations and the rolling backup.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .runtime import open_database, session_scope
from .session import SessionContext
from .storage.journal import PendingOpsJournal
from .storage.store import DurableStore
from .sync.conflict import ConflictMonitor
from .sync.queue import OfflineQueue
from .utils.config import SpireSyncConfig, load_config
from .utils.errors import CampaignNotFound, SpireSyncError, error_context
from .utils.logging import setup_logging, get_logger


console = Console()
logger = get_logger("spire-sync.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="spire-sync", description="Spire campaign storage tools")
    parser.add_argument("--version", action="version", version=f"spire-sync {__version__}")
    parser.add_argument("--config", type=str, help="Config file path")
    parser.add_argument("--data-dir", type=str, help="Override storage.data_dir")
    parser.add_argument("--user", required=True, help="User id whose campaigns to inspect")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("status", help="Show revision, campaigns and queued work")
    commands.add_parser("pending", help="List queued operations")
    commands.add_parser("flush", help="Try to commit queued operations")

    discard = commands.add_parser("discard", help="Drop queued operations")
    discard.add_argument("ids", nargs="*", help="Operation ids (all when omitted)")

    backup = commands.add_parser("backup", help="Show or export the rolling backup")
    backup.add_argument("--export", type=str, help="Write the backup JSON to this path")
    return parser


async def _offline_queue(config: SpireSyncConfig, store: DurableStore, user_id: str) -> OfflineQueue:
    queue = OfflineQueue(
        store,
        ConflictMonitor(store, SessionContext(user_id=user_id)),
        PendingOpsJournal(config.storage.journal_dir),
        user_id,
        max_entries=config.queue.max_entries,
    )
    await queue.load()
    return queue


async def cmd_status(config: SpireSyncConfig, user_id: str) -> int:
    async with open_database(config) as database:
        store = DurableStore(database)
        queue = await _offline_queue(config, store, user_id)
        try:
            campaigns, revision = await store.get(user_id)
        except CampaignNotFound:
            console.print(f"[yellow]No campaigns stored for {user_id}[/yellow]")
            console.print(f"Queued operations: {len(queue)}")
            return 1

    table = Table(title=f"Campaigns for {user_id}")
    table.add_column("Id")
    table.add_column("Name")
    table.add_column("Rules")
    table.add_column("Entities", justify="right")
    table.add_column("Relationships", justify="right")
    for campaign in campaigns.campaigns.values():
        marker = " *" if campaign.id == campaigns.active_campaign_id else ""
        table.add_row(
            campaign.id + marker,
            campaign.name,
            campaign.rules_profile.value,
            str(len(campaign.entities)),
            str(len(campaign.relationships)),
        )

    console.print(table)
    console.print(f"Revision: [bold]{revision}[/bold]")
    console.print(f"Queued operations: {len(queue)}")
    return 0


async def cmd_pending(config: SpireSyncConfig, user_id: str) -> int:
    async with open_database(config) as database:
        queue = await _offline_queue(config, DurableStore(database), user_id)

    if not len(queue):
        console.print("No queued operations")
        return 0

    table = Table(title="Queued operations")
    table.add_column("Id")
    table.add_column("Queued at")
    table.add_column("Label")
    table.add_column("Base revision")
    for op in queue.pending():
        table.add_row(op.id, op.created_at.isoformat(timespec="seconds"), op.label, op.base_revision or "-")
    console.print(table)
    return 0


async def cmd_flush(config: SpireSyncConfig, user_id: str) -> int:
    async with session_scope(config, user_id, actor_label="spire-sync cli") as controller:
        if not len(controller.queue):
            # start() may already have flushed everything
            outcome = controller.last_outcome
            console.print(f"Nothing queued ({outcome.state.value if outcome else 'idle'})")
            return 0

        if controller.monitor.active:
            state = controller.monitor.state
            console.print(
                f"[red]Conflict:[/red] queued work is based on {state.since_revision}, "
                f"durable revision is {state.observed_revision}"
            )
            return 2

        outcome = await controller.flush_pending()
        console.print(f"Flush: {outcome.state.value if outcome else 'skipped'}")
        return 0 if outcome and outcome.saved else 1


async def cmd_discard(config: SpireSyncConfig, user_id: str, ids: list) -> int:
    async with open_database(config) as database:
        queue = await _offline_queue(config, DurableStore(database), user_id)
        removed = await queue.discard(ids) if ids else await queue.clear()
    console.print(f"Discarded {removed} operation(s)")
    return 0


async def cmd_backup(config: SpireSyncConfig, user_id: str, export: Optional[str]) -> int:
    async with open_database(config) as database:
        store = DurableStore(database)
        try:
            campaigns, written_at = await store.get_backup(user_id)
        except CampaignNotFound:
            console.print(f"[yellow]No backup for {user_id}[/yellow]")
            return 1

    console.print(f"Backup written at {written_at.isoformat() if written_at else 'unknown'}")
    console.print(f"Campaigns: {', '.join(c.name for c in campaigns.campaigns.values())}")
    if export:
        with error_context("cli", "backup_export", path=export):
            Path(export).write_text(store.codec.encode(campaigns), encoding="utf-8")
        console.print(f"Exported to {export}")
    return 0


async def run(args: argparse.Namespace) -> int:
    extra = {"storage": {"data_dir": args.data_dir}} if args.data_dir else None
    config = await load_config([args.config] if args.config else None, extra_config=extra)

    setup_logging(
        app_name=config.app_name,
        log_level="DEBUG" if args.debug else config.logging.level,
        log_dir=config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
    )

    if args.command == "status":
        return await cmd_status(config, args.user)
    if args.command == "pending":
        return await cmd_pending(config, args.user)
    if args.command == "flush":
        return await cmd_flush(config, args.user)
    if args.command == "discard":
        return await cmd_discard(config, args.user, args.ids)
    return await cmd_backup(config, args.user, args.export)


def main(argv: Optional[list] = None) -> None:
    """Main entry point for python -m spire_sync"""
    args = build_parser().parse_args(argv)
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\nspire-sync interrupted", file=sys.stderr)
        sys.exit(130)
    except SpireSyncError as e:
        logger.error("command_failed", command=args.command, code=e.code, error=e.message)
        print(f"spire-sync error [{e.code}]: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
