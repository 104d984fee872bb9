"""Command-line interface for inspecting and driving session ledgers."""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from windowkeeper.config import Config
from windowkeeper.context import CanonicalHistory, ContextWindowManager, UpdateKind, UsageSnapshot, materialize
from windowkeeper.errors import PersistenceError
from windowkeeper.logging import get_debug_log_contents, get_debug_log_path, setup_logging
from windowkeeper.storage import LedgerStore

EXIT_ERROR = 1
EXIT_OVERFLOW = 2


def fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def load_history(path: str) -> CanonicalHistory:
    """Read a JSON list of API-style messages into a canonical history."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        fail(f"History file not found: {path}")
    except json.JSONDecodeError as e:
        fail(f"History file is not valid JSON: {e}")

    if not isinstance(data, list):
        fail("History file must contain a JSON list of messages")
    try:
        return CanonicalHistory.from_dicts(data)
    except (KeyError, TypeError, ValueError) as e:
        fail(f"Invalid history: {e}")


def cmd_status(manager: ContextWindowManager, args: argparse.Namespace) -> int:
    session = manager.open_session(args.session)
    for warning in session.pending_warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    ledger = session.ledger
    print(f"Session:    {args.session}")
    if ledger.is_empty:
        print("No reductions recorded")
        return 0

    rng = ledger.deletion_range
    superseded = sum(1 for u in ledger.updates if u.kind == UpdateKind.SUPERSEDED)
    print(f"Revision:   {ledger.revision}")
    print(f"Watermark:  {ledger.watermark}")
    print(f"Range:      {f'[{rng.start}, {rng.end}) ({rng.pair_count} pairs)' if rng else 'None'}")
    print(f"Updates:    {len(ledger.updates)} ({superseded} superseded)")
    print(f"Tracked:    {len(ledger.latest_occurrences)} identifiers")
    return 0


def cmd_show(store: LedgerStore, args: argparse.Namespace) -> int:
    try:
        ledger = store.load(args.session)
    except PersistenceError as e:
        fail(str(e))
    if ledger is None:
        fail(f"No ledger stored for session {args.session}")

    if args.raw:
        print(ledger.to_json())
    else:
        print(json.dumps(ledger.to_dict(), indent=2))
    return 0


def cmd_view(manager: ContextWindowManager, args: argparse.Namespace) -> int:
    history = load_history(args.history)
    session = manager.open_session(args.session, history=history)
    view = materialize(session.history, session.ledger)
    print(json.dumps([m.to_dict() for m in view], indent=2))
    return 0


def cmd_reduce(manager: ContextWindowManager, config: Config, args: argparse.Namespace) -> int:
    history = load_history(args.history)
    session = manager.open_session(args.session, history=history)
    usage: Optional[UsageSnapshot] = None
    if args.input_tokens is not None:
        usage = UsageSnapshot(
            input_tokens=args.input_tokens,
            output_tokens=args.output_tokens,
            cache_read_tokens=args.cache_read_tokens,
            cache_write_tokens=args.cache_write_tokens,
        )

    result = manager.prepare_turn(session, config.context.window_info(), usage)
    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)

    status = manager.get_status(session)
    print(f"Reduced:    {result.reduction_applied}")
    print(f"Optimized:  {result.optimized_blocks} blocks")
    print(f"Messages:   {status['history_messages']} -> {status['view_messages']}")
    print(f"Tokens:     ~{status['token_estimate']}")
    rng = result.deletion_range
    print(f"Range:      {f'[{rng.start}, {rng.end})' if rng else 'None'}")

    if result.overflow:
        print("Error: conversation cannot be truncated further", file=sys.stderr)
        return EXIT_OVERFLOW
    return 0


def cmd_reset(store: LedgerStore, args: argparse.Namespace) -> int:
    try:
        existed = store.delete(args.session)
    except PersistenceError as e:
        fail(str(e))
    print(f"Cleared session {args.session}" if existed else f"No ledger stored for session {args.session}")
    return 0


def cmd_debug_dump(args: argparse.Namespace) -> int:
    content = get_debug_log_contents(lines=args.lines)
    if args.raw:
        # Raw output for piping to jq/grep
        print(content, end="")
    else:
        print(f"# Debug log: {get_debug_log_path()}")
        print("# Tip: Use --raw | jq for JSON parsing")
        print()
        print(content, end="")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="windowkeeper",
        description="Inspect and drive context window reduction for stored sessions",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="Summarize a session's ledger")
    status_parser.add_argument("session", help="Session identifier")

    show_parser = subparsers.add_parser("show", help="Print a session's stored ledger")
    show_parser.add_argument("session", help="Session identifier")
    show_parser.add_argument("--raw", action="store_true", help="Compact single-line JSON")

    view_parser = subparsers.add_parser("view", help="Materialize a history file with the stored ledger")
    view_parser.add_argument("session", help="Session identifier")
    view_parser.add_argument("history", help="JSON file with the canonical history")

    reduce_parser = subparsers.add_parser("reduce", help="Run one reduction turn and persist it")
    reduce_parser.add_argument("session", help="Session identifier")
    reduce_parser.add_argument("history", help="JSON file with the canonical history")
    reduce_parser.add_argument("--input-tokens", type=int, default=None)
    reduce_parser.add_argument("--output-tokens", type=int, default=0)
    reduce_parser.add_argument("--cache-read-tokens", type=int, default=0)
    reduce_parser.add_argument("--cache-write-tokens", type=int, default=0)

    reset_parser = subparsers.add_parser("reset", help="Delete a session's stored ledger")
    reset_parser.add_argument("session", help="Session identifier")

    debug_parser = subparsers.add_parser("debug-dump", help="Dump debug logs for troubleshooting")
    debug_parser.add_argument(
        "--raw",
        action="store_true",
        help="Output raw JSON lines (for piping to tools)",
    )
    debug_parser.add_argument("--lines", type=int, default=200, help="Number of lines to show")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for windowkeeper."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.load(args.config)
    except (ValueError, TypeError) as e:
        fail(f"Invalid configuration: {e}")

    if args.debug:
        config.logging.level = "DEBUG"

    if args.command == "debug-dump":
        return cmd_debug_dump(args)

    setup_logging(
        config,
        console_level=config.logging.level,
        debug_to_file=config.logging.debug_to_file,
        use_colors=config.logging.use_colors,
    )

    store = config.storage.create_store()
    manager = ContextWindowManager.from_config(config, store=store)

    if args.command == "status":
        return cmd_status(manager, args)
    if args.command == "show":
        return cmd_show(store, args)
    if args.command == "view":
        return cmd_view(manager, args)
    if args.command == "reduce":
        return cmd_reduce(manager, config, args)
    return cmd_reset(store, args)


if __name__ == "__main__":
    sys.exit(main())
