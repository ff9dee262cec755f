"""Command-line entry point: ``python -m ledger_scheduler``."""

import argparse
import asyncio
import json
import sys
from datetime import date, datetime
from zoneinfo import ZoneInfo

import structlog

from ledger_scheduler.config import configure_logging, get_settings
from ledger_scheduler.config.schedules_loader import load_schedules
from ledger_scheduler.errors import SchedulerError
from ledger_scheduler.events import EventPublisher
from ledger_scheduler.ledger import LedgerAPIClient
from ledger_scheduler.materializer import Materializer
from ledger_scheduler.occurrences import occurrences_after
from ledger_scheduler.runner import SchedulerRunner
from ledger_scheduler.store import SqlScheduleStore

logger = structlog.get_logger(__name__)


def _today() -> date:
    """Current calendar date in the scheduler's time zone."""
    return datetime.now(ZoneInfo(get_settings().scheduler_timezone)).date()


def _open_store(database_url: str | None) -> SqlScheduleStore:
    store = SqlScheduleStore(database_url)
    store.create_schema()
    return store


async def _tick(args: argparse.Namespace) -> int:
    store = _open_store(args.database_url)
    publisher = EventPublisher()
    async with LedgerAPIClient() as client:
        materializer = Materializer(store, client, client, publisher)
        runner = SchedulerRunner(store, materializer, notifier=client, publisher=publisher)
        report = await runner.tick(args.date or _today())
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.ok else 1


async def _run(args: argparse.Namespace) -> int:
    store = _open_store(args.database_url)
    publisher = EventPublisher()
    if args.serve_events:
        await publisher.start()
    try:
        async with LedgerAPIClient() as client:
            materializer = Materializer(store, client, client, publisher)
            runner = SchedulerRunner(
                store, materializer, notifier=client, publisher=publisher
            )
            await runner.run_forever(args.interval, today=_today)
    finally:
        await publisher.stop()
    return 0


def _import(args: argparse.Namespace) -> int:
    store = _open_store(args.database_url)
    imported = skipped = 0
    for schedule in load_schedules(args.file):
        try:
            store.create(schedule)
        except SchedulerError as e:
            logger.warning("schedule_import_skipped", schedule_id=str(schedule.id), error=str(e))
            skipped += 1
            continue
        imported += 1
    logger.info("schedules_imported", file=str(args.file), imported=imported, skipped=skipped)
    print(f"Imported {imported} schedule(s), skipped {skipped}.")
    return 0


def _preview(args: argparse.Namespace) -> int:
    for schedule in load_schedules(args.file):
        label = schedule.template.description or str(schedule.id)
        print(f"{label}: {schedule.rule.describe()}")
        for day in occurrences_after(schedule.rule, count=args.count):
            print(f"  {day.isoformat()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-scheduler",
        description="Recurring-transaction scheduler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s tick                          # Materialize everything due today
  %(prog)s tick --date 2024-02-29        # Tick as of a given date
  %(prog)s run --interval 600            # Tick every 10 minutes
  %(prog)s import schedules.yaml         # Load YAML schedules into the database
  %(prog)s preview schedules.yaml -n 12  # Show the next 12 dates of each schedule
        """,
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override LOG_LEVEL",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    tick = sub.add_parser("tick", help="Run a single tick")
    tick.add_argument("--date", type=date.fromisoformat, help="Tick date (YYYY-MM-DD)")
    tick.add_argument("--database-url", help="Override DATABASE_URL")

    run = sub.add_parser("run", help="Tick on an interval until interrupted")
    run.add_argument("--interval", type=float, help="Seconds between ticks")
    run.add_argument("--database-url", help="Override DATABASE_URL")
    run.add_argument(
        "--serve-events", action="store_true", help="Start the WebSocket event feed"
    )

    imp = sub.add_parser("import", help="Import schedules from a YAML file")
    imp.add_argument("file", help="YAML schedule file")
    imp.add_argument("--database-url", help="Override DATABASE_URL")

    preview = sub.add_parser("preview", help="Preview occurrences of YAML schedules")
    preview.add_argument("file", help="YAML schedule file")
    preview.add_argument("-n", "--count", type=int, default=5, help="Dates per schedule")

    return parser


async def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch a command."""
    args = build_parser().parse_args(argv)

    if args.command == "preview":
        configure_logging(args.log_level or "WARNING", "console")
    else:
        configure_logging(args.log_level)

    logger.debug("command_starting", command=args.command)
    try:
        match args.command:
            case "tick":
                return await _tick(args)
            case "run":
                return await _run(args)
            case "import":
                return _import(args)
            case "preview":
                return _preview(args)
    except (ValueError, SchedulerError) as e:
        logger.error("command_failed", command=args.command, error=str(e))
        return 2
    return 1


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("scheduler_interrupted")


if __name__ == "__main__":
    run()
