"""
Command-line interface for trade history sync.

Provides print utilities and CLI entry point.
"""
from __future__ import annotations

import argparse
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from core.config import Config
from core.game_version import GameVersion
from core.logging_setup import setup_logging
from core.trade_history.backup import backup_histories
from core.trade_history.cleanup import cleanup_history_file
from core.trade_history.export import default_export_name, export_history_csv
from core.trade_history.league import format_league_label, is_known_league, league_options
from core.trade_history.models import HistorySnapshot, SyncResult
from core.trade_history.orchestrator import TradeHistoryOrchestrator
from core.trade_history.persistence import HistoryFileStore
from data_sources.trade_history_api import TradeHistoryClient

logger = logging.getLogger(__name__)


def _format_ms(ms: int) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def print_snapshot(snapshot: HistorySnapshot, limit: int = 10) -> None:
    """Pretty-print totals and the newest entries."""
    print(f"\n{'='*60}")
    print(f" {format_league_label(snapshot.league)} - {snapshot.entry_count} trades")
    print(f"{'='*60}")
    print(f"  Last sync:  {_format_ms(snapshot.last_sync)}")
    print(f"  Last fetch: {_format_ms(snapshot.last_fetch_at)}")

    if snapshot.totals:
        print("  Totals:")
        for currency, amount in sorted(snapshot.totals.items()):
            print(f"    {currency:12} {amount:,.2f}")

    newest = sorted(snapshot.entries, key=lambda e: e.timestamp, reverse=True)[:limit]
    for entry in newest:
        name = entry.display_name or "(incomplete)"
        price = f"{entry.price.amount:g} {entry.price.currency}" if entry.price else "-"
        print(f"  {_format_ms(entry.timestamp)}  {name:40} {price}")


def print_result(result: SyncResult) -> None:
    if result.ok:
        print(f"Synced: {result.added} new, {result.upgraded} upgraded")
        return
    line = f"Not synced: {result.reason}"
    if result.next_allowed_at:
        line += f" (next fetch allowed at {_format_ms(result.next_allowed_at)})"
    if result.message:
        line += f" - {result.message}"
    print(line)


def build_client(config: Config) -> TradeHistoryClient:
    connect, read = config.get_api_timeouts()
    return TradeHistoryClient(
        config.poesessid,
        game=config.current_game,
        user_agent=config.user_agent,
        timeout=(connect, read),
    )


def build_orchestrator(config: Config) -> tuple[TradeHistoryOrchestrator, TradeHistoryClient]:
    client = build_client(config)
    orchestrator = TradeHistoryOrchestrator.from_config(config, client.fetch)
    orchestrator.initialize()
    return orchestrator, client


def _cmd_sync(config: Config, args: argparse.Namespace) -> int:
    orchestrator, client = build_orchestrator(config)
    try:
        result = orchestrator.refresh()
        print_result(result)
        print_snapshot(orchestrator.get_snapshot(), limit=args.limit)
        return 0 if result.ok or result.cached else 1
    finally:
        orchestrator.close()
        client.close()


def _cmd_watch(config: Config, args: argparse.Namespace) -> int:
    orchestrator, client = build_orchestrator(config)
    stop = threading.Event()
    orchestrator.add_update_listener(lambda snap: print_snapshot(snap, limit=args.limit))
    orchestrator.start_auto_refresh()
    print("Watching trade history (Ctrl+C to stop)")
    try:
        while orchestrator.scheduler.is_running and not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        orchestrator.close()
        client.close()
    last = orchestrator.last_result
    if last is not None:
        print_result(last)
    return 0


def _cmd_status(config: Config, args: argparse.Namespace) -> int:
    files = HistoryFileStore(config.history_data_dir, config.current_game)
    league = config.history_league or "(not chosen)"
    print(f"Game:    {config.current_game.display_name()}")
    print(f"League:  {league} [{config.history_league_source}]")
    print(f"Data:    {files.data_dir}")
    print(f"Session: {'configured' if config.poesessid else 'missing'}")
    if args.check_session and config.poesessid and config.history_league:
        client = build_client(config)
        try:
            accepted = client.verify_session(config.history_league)
        finally:
            client.close()
        print(f"         {'accepted' if accepted else 'rejected'} by the trade site")
    if config.history_league:
        print_snapshot(files.load(config.history_league).snapshot(), limit=args.limit)
    return 0


def _cmd_league(config: Config, args: argparse.Namespace) -> int:
    if not args.name:
        for option in league_options(config.current_game):
            marker = "*" if option.id == config.history_league else " "
            print(f" {marker} {option.id:32} {option.tag:10} {option.hint}")
        return 0
    config.set_history_league(args.name, "manual")
    print(f"League set to {format_league_label(args.name)}")
    if not is_known_league(config.current_game, args.name):
        print(f"  Note: not a listed {config.current_game.display_name()} league, used as typed")
    return 0


def _cmd_export(config: Config, args: argparse.Namespace) -> int:
    league = args.league or config.history_league
    if not league:
        print("No league selected. Use: league <name>")
        return 1
    store = HistoryFileStore(config.history_data_dir, config.current_game).load(league)
    output = Path(args.output) if args.output else config.history_data_dir / default_export_name(league)
    result = export_history_csv(store, output)
    if not result.success:
        print(f"Export failed: {result.error}")
        return 1
    print(f"Exported {result.record_count} trades to {result.file_path}")
    return 0


def _cmd_backup(config: Config, args: argparse.Namespace) -> int:
    result = backup_histories(config.history_data_dir, config.max_backups)
    print(f"Backed up {result.total_backups} file(s), removed {result.cleaned_old_backups} old backup(s)")
    for error in result.errors:
        print(f"  ! {error}")
    return 0 if result.success else 1


def _cmd_cleanup(config: Config, args: argparse.Namespace) -> int:
    league = args.league or config.history_league
    if not league:
        print("No league selected. Use: league <name>")
        return 1
    path = HistoryFileStore(config.history_data_dir, config.current_game).path_for(league)
    result = cleanup_history_file(path, dry_run=args.dry_run)
    if not result.success:
        print(f"Cleanup failed: {result.error}")
        return 1
    verb = "Would remove" if args.dry_run else "Removed"
    print(f"{verb} {result.removed_count} duplicate(s): {result.total_before} -> {result.total_after}")
    return 0


COMMANDS = {
    "sync": _cmd_sync,
    "watch": _cmd_watch,
    "status": _cmd_status,
    "league": _cmd_league,
    "export": _cmd_export,
    "backup": _cmd_backup,
    "cleanup": _cmd_cleanup,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="PoE Trade History Sync - keep a local record of your marketplace sales",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  trade-history-sync league "Rise of the Abyssal"   # Confirm the league to sync
  trade-history-sync sync                           # One fetch (if allowed)
  trade-history-sync watch                          # Auto-refresh until Ctrl+C
  trade-history-sync export -o sales.csv            # CSV export
  trade-history-sync cleanup --dry-run              # Report duplicate rows
        """
    )
    parser.add_argument("--config", type=Path, help="Path to config.json")
    parser.add_argument("--game", choices=[g.value for g in GameVersion], help="Override the game version")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    parser.add_argument("-n", "--limit", type=int, default=10, help="Trades to print (default: 10)")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("sync", help="Fetch once and merge into the local history")
    sub.add_parser("watch", help="Run auto-refresh until interrupted")
    status = sub.add_parser("status", help="Show league, session and local history")
    status.add_argument(
        "--check-session", action="store_true",
        help="Ask the trade site whether the session is accepted (uses one request)",
    )

    league = sub.add_parser("league", help="Show league options or confirm a league")
    league.add_argument("name", nargs="?", help="League to confirm")

    export = sub.add_parser("export", help="Export history to CSV")
    export.add_argument("-l", "--league", help="League (default: configured league)")
    export.add_argument("-o", "--output", help="Output CSV path")

    sub.add_parser("backup", help="Back up all history files")

    cleanup = sub.add_parser("cleanup", help="Collapse duplicate rows in a history file")
    cleanup.add_argument("-l", "--league", help="League (default: configured league)")
    cleanup.add_argument("--dry-run", action="store_true", help="Only report")
    return parser


def cli_main(argv: Optional[List[str]] = None) -> int:
    """Command-line interface for trade history sync."""
    args = build_parser().parse_args(argv)

    config = Config(args.config)
    setup_logging(debug=args.debug, log_dir=config.config_file.parent)
    if args.game:
        game = GameVersion.from_string(args.game)
        if game is not None and game is not config.current_game:
            config.current_game = game

    return COMMANDS[args.command](config, args)


if __name__ == "__main__":
    raise SystemExit(cli_main())
