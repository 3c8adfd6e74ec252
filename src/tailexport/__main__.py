"""CLI entry point for tailexport.

Usage:
    python -m tailexport <command> [options]

Commands:
    replay <file> [--batch-size N] [--config PATH]
    config validate [--config PATH]
    config get <key> [--config PATH]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import IO, Any, NoReturn

from tailexport import __version__

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

logger = logging.getLogger("tailexport")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="tailexport",
        description="Export metrics and logs from invocation trace items",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to a rotating file instead of stderr",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # replay command
    replay_parser = subparsers.add_parser(
        "replay", help="Feed JSONL trace items through the configured sinks"
    )
    replay_parser.add_argument("file", help="JSONL file of trace items (use - for stdin)")
    replay_parser.add_argument(
        "--batch-size",
        type=int,
        default=10,
        help="Trace items per batch (default: 10)",
    )
    replay_parser.add_argument(
        "--config",
        help="Path to config file (default: search for .tailexport/config.toml)",
    )

    # config command
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(
        dest="config_command", help="Config subcommands"
    )

    # config validate
    validate_parser = config_subparsers.add_parser("validate", help="Validate configuration")
    validate_parser.add_argument("--config", help="Path to config file")

    # config get
    get_parser = config_subparsers.add_parser("get", help="Get configuration value")
    get_parser.add_argument("key", help="Configuration key (e.g. metrics.max_buffer_size)")
    get_parser.add_argument("--config", help="Path to config file")

    return parser


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Configure the tailexport logger."""
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    # Avoid adding multiple handlers if re-initialized
    if not logger.handlers:
        logger.addHandler(handler)


def read_trace_items(stream: IO[str]) -> Iterator[dict[str, Any]]:
    """Yield trace item dicts from JSONL, skipping blank and invalid lines."""
    for line_number, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Skipping line %d: invalid JSON (%s)", line_number, e)
            continue
        if not isinstance(data, dict):
            logger.warning("Skipping line %d: expected a JSON object", line_number)
            continue
        yield data


def batched(items: Iterator[dict[str, Any]], size: int) -> Iterator[list[dict[str, Any]]]:
    batch: list[dict[str, Any]] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


async def replay(exporter: Any, stream: IO[str], batch_size: int) -> int:
    """Feed every batch to the exporter and wait for all flushes.

    Returns:
        Number of trace items replayed.
    """
    from tailexport.background import BackgroundTasks

    ctx = BackgroundTasks()
    total = 0
    for batch in batched(read_trace_items(stream), batch_size):
        exporter.tail(batch, ctx)
        total += len(batch)
        # Let immediate flushes start between batches
        await asyncio.sleep(0)

    await ctx.join()
    return total


def _load_config(args: argparse.Namespace) -> Any:
    from tailexport.config import Config

    path = Path(args.config) if getattr(args, "config", None) else None
    return Config.load(path)


def cmd_replay(args: argparse.Namespace) -> int:
    """Handle 'replay' command."""
    if args.batch_size < 1:
        print("Error: --batch-size must be at least 1", file=sys.stderr)
        return 1

    try:
        config = _load_config(args)
        exporter = config.build_exporter()
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if exporter.metrics is None and exporter.logs is None:
        print("No sinks configured; nothing to export", file=sys.stderr)
        return 1

    try:
        if args.file == "-":
            total = asyncio.run(replay(exporter, sys.stdin, args.batch_size))
        else:
            with open(args.file) as f:
                total = asyncio.run(replay(exporter, f, args.batch_size))
    except OSError as e:
        print(f"Error reading {args.file}: {e}", file=sys.stderr)
        return 1

    print(f"Replayed {total} trace item(s)")
    return 0


def cmd_config_validate(args: argparse.Namespace) -> int:
    """Handle 'config validate' command."""
    try:
        config = _load_config(args)
        print(f"Configuration valid: {config.config_path}")
        for stream in ("metrics", "logs"):
            stream_config = getattr(config, stream)
            print(
                f"  {stream}: max_buffer_size={stream_config.max_buffer_size}, "
                f"max_buffer_duration={stream_config.max_buffer_duration}s"
            )
            for sink in config.get_sinks_for_stream(stream):
                print(f"    - {sink.name}: type={sink.type}")
        return 0
    except FileNotFoundError as e:
        print(f"No configuration found: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1


def cmd_config_get(args: argparse.Namespace) -> int:
    """Handle 'config get' command."""
    try:
        config = _load_config(args)
        value = config.get_value(args.key)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except KeyError:
        print(f"Error: Invalid config path: {args.key}", file=sys.stderr)
        return 1

    print(value)
    return 0


def main() -> NoReturn:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "replay":
        sys.exit(cmd_replay(args))
    elif args.command == "config":
        if args.config_command == "validate":
            sys.exit(cmd_config_validate(args))
        elif args.config_command == "get":
            sys.exit(cmd_config_get(args))
        else:
            parser.parse_args(["config", "--help"])
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
