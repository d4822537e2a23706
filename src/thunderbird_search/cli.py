"""Command-line interface for Thunderbird Search.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date

import structlog

from thunderbird_search import __version__
from thunderbird_search.config import Settings, get_settings
from thunderbird_search.exceptions import CacheWriteError, MailSearchError
from thunderbird_search.models import MessageSummary, SearchRequest
from thunderbird_search.profiles import load_profiles
from thunderbird_search.search import SearchService
from thunderbird_search.utils import truncate

logger = structlog.get_logger()


def _build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tb-search", description="Read-only search over Thunderbird mailboxes")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_profile(p: argparse.ArgumentParser) -> None:
        p.add_argument("--profile", default="", help="Profile name or path (default: the default profile)")

    subparsers.add_parser("profiles", help="List Thunderbird profiles")

    folders_parser = subparsers.add_parser("folders", help="List mailbox folders of a profile")
    add_profile(folders_parser)

    recent_parser = subparsers.add_parser("recent", help="Show the last messages of one folder")
    recent_parser.add_argument("folder", help="Folder name or name substring")
    recent_parser.add_argument("--limit", type=int, default=20, help="Number of messages")
    recent_parser.add_argument("--query", default="", help="Only messages containing this text")
    add_profile(recent_parser)

    show_parser = subparsers.add_parser("show", help="Print full messages of one folder")
    show_parser.add_argument("--folder", required=True, help="Folder name or name substring")
    show_parser.add_argument("--query", required=True, help="Text to look for")
    show_parser.add_argument("--limit", type=int, default=1, help="Number of messages (0 = all)")
    show_parser.add_argument("--account", "--ac", default="", help="Folder must belong to this identity email")
    show_parser.add_argument("--thread", action="store_true", help="Print the whole conversation of the first match")
    add_profile(show_parser)

    search_parser = subparsers.add_parser("search", help="Search messages")
    search_parser.add_argument("query", nargs="?", default="", help="Text to look for")
    add_profile(search_parser)
    search_parser.add_argument("--folder", default="", help="Folder name substring")
    search_parser.add_argument("--account", "--ac", default="", help="Only folders of this identity email")
    search_parser.add_argument(
        "--since", "--ds", type=date.fromisoformat, default=None, help="Inclusive start day (YYYY-MM-DD)"
    )
    search_parser.add_argument(
        "--till", "--dt", type=date.fromisoformat, default=None, help="Inclusive end day (YYYY-MM-DD)"
    )
    search_parser.add_argument(
        "--limit", type=int, default=settings.default_limit, help="Max results (0 = unlimited)"
    )
    search_parser.add_argument("--all", action="store_true", help="Return every match")
    search_parser.add_argument("--fuzzy", action="store_true", help="Match every word in any order")
    search_parser.add_argument("--no-index", action="store_true", help="Bypass the local index cache")
    search_parser.add_argument(
        "--max-messages", type=int, default=0, help="Messages scanned per folder (0 = all)"
    )
    search_parser.add_argument("--tail", type=int, default=0, help="Keep only the last N matches per folder")
    search_parser.add_argument("--store", action="store_true", help="Answer from the persistent store")
    search_parser.add_argument("--plain", action="store_true", help="Pipe-separated output")

    index_parser = subparsers.add_parser("index", help="Pre-build the local index cache")
    add_profile(index_parser)
    index_parser.add_argument("--folder", default="", help="Folder name substring")
    index_parser.add_argument("--account", "--ac", default="", help="Only folders of this identity email")
    index_parser.add_argument("--tail", type=int, default=0, help="Keep only the last N messages per folder")

    sync_parser = subparsers.add_parser("sync", help="Mirror a profile into the persistent store")
    add_profile(sync_parser)
    sync_parser.add_argument("--no-prune", action="store_true", help="Keep rows of messages that disappeared")

    return parser


def _human_size(n: int) -> str:
    unit = 1024
    if n < unit:
        return f"{n}B"
    value = float(n)
    for suffix in "KMGTPE":
        value /= unit
        if value < unit:
            break
    return f"{value:.1f}{suffix}iB"


def _print_hits(hits: list[MessageSummary], plain: bool) -> None:
    if plain:
        for h in hits:
            print(
                " | ".join(
                    [
                        h.date,
                        truncate(h.folder, 22),
                        truncate(h.sender, 40),
                        truncate(h.subject, 60),
                        truncate(h.snippet, 120),
                    ]
                )
            )
        return

    rows = [("Date", "Folder", "From", "Subject", "Snippet")]
    rows.extend(
        (
            h.date,
            truncate(h.folder, 24),
            truncate(h.sender, 40),
            truncate(h.subject, 60),
            truncate(h.snippet, 120),
        )
        for h in hits
    )
    widths = [max(len(r[i]) for r in rows) for i in range(4)]
    for r in rows:
        print("  ".join(col.ljust(w) for col, w in zip(r, widths)) + "  " + r[4])


def _cmd_profiles(settings: Settings, _args: argparse.Namespace) -> int:
    for p in load_profiles(settings.profile_root):
        marker = "*" if p.default else " "
        print(f"{marker} {p.name}\t{p.absolute_path}")
    return 0


def _cmd_folders(service: SearchService, args: argparse.Namespace) -> int:
    profile, boxes = service.list_folders(args.profile)
    print(f"Profile: {profile.name} ({profile.absolute_path})")
    for b in boxes:
        print(f"{_human_size(b.size):>10}  {b.name}")
    return 0


def _cmd_recent(service: SearchService, args: argparse.Namespace) -> int:
    hits = service.recent(args.folder, profile_name=args.profile, limit=args.limit, query=args.query)
    if not hits:
        print("No matches.")
        return 0
    _print_hits(hits, plain=False)
    return 0


def _cmd_show(service: SearchService, args: argparse.Namespace) -> int:
    messages = service.show(
        args.folder,
        query=args.query,
        profile_name=args.profile,
        account=args.account,
        limit=args.limit,
        thread=args.thread,
    )
    if not messages:
        print("No matches.")
        return 0
    for m in messages:
        s = m.summary
        print(f"From: {s.sender}")
        print(f"Subject: {s.subject}")
        print(f"Date: {s.date}")
        if s.account:
            print(f"Account: {s.account}")
        print(f"Folder: {s.folder}")
        if s.message_id:
            print(f"Message-ID: {s.message_id}")
        print()
        print(m.body)
        print("-" * 80)
    return 0


def _cmd_search(service: SearchService, args: argparse.Namespace) -> int:
    request = SearchRequest(
        query=args.query,
        profile=args.profile,
        folder_like=args.folder,
        account=args.account,
        since=args.since,
        till=args.till,
        limit=0 if args.all else args.limit,
        fuzzy=args.fuzzy,
        no_cache=args.no_index,
        use_store=args.store,
        max_messages=args.max_messages,
        tail=args.tail,
    )
    try:
        hits = service.search(request)
    except CacheWriteError as e:
        _print_hits(e.hits, plain=args.plain)
        raise

    if not hits:
        print("No matches.")
        return 0
    _print_hits(hits, plain=args.plain)
    return 0


def _cmd_index(service: SearchService, args: argparse.Namespace) -> int:
    index = service.build_cache(
        profile_name=args.profile,
        folder_like=args.folder,
        account=args.account,
        tail=args.tail,
    )
    total = sum(len(entry.messages) for entry in index.folders.values())
    print(f"Indexed {total} messages from {len(index.folders)} folders")
    return 0


def _cmd_sync(service: SearchService, args: argparse.Namespace) -> int:
    result = service.sync_store(profile_name=args.profile, prune=not args.no_prune)
    print(f"Synced {result.messages} messages from {result.folders} folders (pruned {result.pruned})")
    if not result.complete:
        print("Some folders could not be read; pruning was skipped.", file=sys.stderr)
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Thunderbird Search CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging; stdout is reserved for results.
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )

    logger.debug("thunderbird_search_started", version=__version__, debug=settings.debug)

    parser = _build_parser(settings)
    parsed = parser.parse_args(args)

    service = SearchService(settings)
    try:
        if parsed.command == "profiles":
            return _cmd_profiles(settings, parsed)
        if parsed.command == "folders":
            return _cmd_folders(service, parsed)
        if parsed.command == "recent":
            return _cmd_recent(service, parsed)
        if parsed.command == "show":
            return _cmd_show(service, parsed)
        if parsed.command == "search":
            return _cmd_search(service, parsed)
        if parsed.command == "index":
            return _cmd_index(service, parsed)
        if parsed.command == "sync":
            return _cmd_sync(service, parsed)
    except MailSearchError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
