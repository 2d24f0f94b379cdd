"""CLI entry point for docmirror."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .errors import DocMirrorError
from .persistence import SQLiteStorage
from .registry import StoreContext
from .schema import load_definitions


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.WARNING

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def build_context(config: Config) -> StoreContext:
    """Create and initialize the store context described by ``config``."""
    context = StoreContext.from_config(config)
    if config.schema.path:
        context.define(load_definitions(config.schema.path))
    return context.init()


async def cmd_collections(args: argparse.Namespace) -> int:
    """List registered collections."""
    context = build_context(load_config(args.config))
    try:
        for name in context.names():
            cache = context.cache(name)
            print(f"{name:<24} {len(cache):>6} documents")
    finally:
        await context.teardown()
    return 0


async def cmd_show(args: argparse.Namespace) -> int:
    """Print the cached documents of one collection."""
    context = build_context(load_config(args.config))
    try:
        cache = context.cache(args.collection)
        documents = [handle.to_dict() for handle in cache]
        print(json.dumps(documents, indent=2))
    finally:
        await context.teardown()
    return 0


async def cmd_pull(args: argparse.Namespace) -> int:
    """Fetch pages of a collection from the remote service into the cache."""
    config = load_config(args.config)
    if not (config.remote.enabled and config.remote.base_url):
        print("Error: no remote service configured", file=sys.stderr)
        return 1

    context = build_context(config)
    try:
        cache = context.cache(args.collection)
        pages = 0
        documents = 0
        async for page in (await cache.load_all()).walk():
            pages += 1
            documents += len(page)
            if pages >= args.pages:
                break
        print(f"Pulled {documents} documents in {pages} page(s) into '{cache.name}'")
    finally:
        await context.teardown()
    return 0


async def cmd_clear(args: argparse.Namespace) -> int:
    """Drop the cached copy of one collection."""
    context = build_context(load_config(args.config))
    try:
        cache = context.cache(args.collection)
        count = len(cache)
        cache.destroy()
        print(f"Cleared {count} documents from '{cache.name}'")
    finally:
        await context.teardown()
    return 0


async def cmd_stats(args: argparse.Namespace) -> int:
    """Show cache and storage statistics."""
    config = load_config(args.config)
    context = build_context(config)
    try:
        stats = {
            "timestamp": datetime.now().isoformat(),
            "storage": {"backend": config.storage.backend},
            "remote": {
                "enabled": config.remote.enabled,
                "base_url": config.remote.base_url,
            },
            "caches": context.get_stats(),
        }
        if isinstance(context.storage, SQLiteStorage):
            stats["storage"].update(context.storage.get_stats())
    finally:
        await context.teardown()

    if args.json:
        print(json.dumps(stats, indent=2))
        return 0

    print("docmirror Stats")
    print("===============")
    print(f"Storage: {stats['storage']['backend']}")
    if "db_size_mb" in stats["storage"]:
        print(f"  Size: {stats['storage']['db_size_mb']} MB")
    remote = stats["remote"]
    print(f"Remote: {remote['base_url'] if remote['enabled'] else 'disabled'}")
    print()
    print("Caches:")
    for name, cache_stats in stats["caches"].items():
        print(
            f"  {name}: {cache_stats['documents']} documents, "
            f"undo {cache_stats['undo_depth']}, redo {cache_stats['redo_depth']}"
        )
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="docmirror",
        description="Inspect and manage a local mirror of a remote document service",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    collections_parser = subparsers.add_parser("collections", help="List cached collections")
    collections_parser.set_defaults(func=cmd_collections)

    show_parser = subparsers.add_parser("show", help="Print a collection's cached documents")
    show_parser.add_argument("collection", help="Collection name")
    show_parser.set_defaults(func=cmd_show)

    pull_parser = subparsers.add_parser("pull", help="Fetch a collection from the remote service")
    pull_parser.add_argument("collection", help="Collection name")
    pull_parser.add_argument(
        "--pages",
        type=int,
        default=1,
        help="Number of pages to fetch (default: 1)",
    )
    pull_parser.set_defaults(func=cmd_pull)

    clear_parser = subparsers.add_parser("clear", help="Drop a collection's cached copy")
    clear_parser.add_argument("collection", help="Collection name")
    clear_parser.set_defaults(func=cmd_clear)

    stats_parser = subparsers.add_parser("stats", help="Show cache statistics")
    stats_parser.add_argument(
        "--json",
        action="store_true",
        help="Output stats as JSON",
    )
    stats_parser.set_defaults(func=cmd_stats)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except DocMirrorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
