"""
TaskLite CLI - inspect and maintain a task queue database.

Tasks are processed by callbacks inside the host program, so the CLI only
covers enqueueing, listing, counting and removing tasks.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import List, Optional

from .config import QueueConfig
from .container import create_container
from .queue import TaskQueue
from .task import TaskStatus

STATUS_CHOICES = [status.value for status in TaskStatus] + ["all"]


def setup_logging(log_level: str = "INFO"):
    """Setup logging configuration"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the command line argument parser"""
    parser = argparse.ArgumentParser(
        prog="tasklite",
        description="TaskLite - embedded task queue maintenance CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Add a task, replacing the value if the key exists
  tasklite --db queue.db enqueue report-42 '{"month": 5}' --upsert

  # Show failed tasks
  tasklite --db queue.db list --status failed

  # Drop completed tasks queued before a date
  tasklite --db queue.db remove --status completed --before 2024-01-01T00:00:00
        """
    )

    parser.add_argument(
        "--db",
        default=None,
        help="Path to the queue database (default: $TASKLITE_PATH or tasklite.db)"
    )
    parser.add_argument(
        "--trace-sql",
        action="store_true",
        help="Log every SQL statement at DEBUG level"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="WARNING",
        help="Set the logging level (default: WARNING)"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    enqueue = commands.add_parser("enqueue", help="Add a pending task")
    enqueue.add_argument("key")
    enqueue.add_argument("value", nargs="?", default=None)
    enqueue.add_argument("--upsert", action="store_true", help="Reset the task if the key exists")

    listing = commands.add_parser("list", help="List tasks in claim order")
    listing.add_argument("--status", action="append", choices=STATUS_CHOICES, dest="statuses")

    commands.add_parser("stats", help="Count tasks per status")

    remove = commands.add_parser("remove", help="Remove tasks matching every given filter")
    remove.add_argument("--id", type=int, default=None)
    remove.add_argument("--status", action="append", choices=STATUS_CHOICES, dest="statuses")
    remove.add_argument(
        "--before",
        type=datetime.fromisoformat,
        default=None,
        help="Only tasks queued strictly before this ISO timestamp (UTC unless it has an offset)"
    )

    return parser


def _statuses_arg(values: Optional[List[str]]):
    if not values:
        return None
    if "all" in values:
        return "all"
    return values


def build_config(args: argparse.Namespace) -> QueueConfig:
    config = QueueConfig.from_env()
    if args.db:
        config.path = args.db
    if args.trace_sql:
        config.trace_sql = True
    return config


async def execute(args: argparse.Namespace, queue: TaskQueue) -> int:
    """Run one parsed command against an initialized queue and return the exit code"""
    if args.command == "enqueue":
        result = await queue.enqueue(args.key, args.value, upsert=args.upsert)
        if not result.ok:
            print(f"error: {result.error}", file=sys.stderr)
            return 1
        print(result.task_id)

    elif args.command == "list":
        for task in await queue.list_tasks(_statuses_arg(args.statuses)):
            print(task.to_json())

    elif args.command == "stats":
        for status, count in (await queue.stats()).items():
            print(f"{status.value:<12}{count:>8}  {status.get_metadata()['description']}")

    elif args.command == "remove":
        if args.id is None and not args.statuses and args.before is None:
            print("error: remove needs at least one of --id, --status, --before", file=sys.stderr)
            return 2
        removed = await queue.remove(
            id=args.id,
            statuses=_statuses_arg(args.statuses),
            queued_before=args.before,
        )
        print(removed)

    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    logger = logging.getLogger("tasklite.cli")

    container = create_container(build_config(args))
    queue = container.task_queue()
    await queue.initialize()
    try:
        return await execute(args, queue)
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}", exc_info=True)
        return 1
    finally:
        await queue.close()


def run():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
