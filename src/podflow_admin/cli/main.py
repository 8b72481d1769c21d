"""CLI entrypoint for audit and backup maintenance."""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID

from dotenv import load_dotenv

from ..api.config import get_settings
from ..audit.service import get_audit_service

# Load environment variables
load_dotenv()


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration.

    Args:
        level: Logging level
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _date(value: str) -> datetime:
    """argparse type for ISO dates; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        argv: Arguments to parse (defaults to sys.argv)

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="PodcastFlow Admin - audit trail and backup maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Delete non-critical audit logs older than the configured retention
  podflow-admin retain

  # Compliance report for January
  podflow-admin report --org <uuid> --start 2026-01-01 --end 2026-01-31

  # Export an organization's audit trail as CSV
  podflow-admin export --org <uuid> --format csv --output audit.csv

  # Remove weekly backups past their retention window
  podflow-admin cleanup-backups --org <uuid> --frequency weekly
        """,
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    retain = subparsers.add_parser("retain", help="Apply the audit log retention policy")
    retain.add_argument(
        "--days",
        type=int,
        default=None,
        help="Retention window in days (default: PODFLOW_AUDIT_RETENTION_DAYS)",
    )

    report = subparsers.add_parser("report", help="Print a compliance report as JSON")
    report.add_argument("--org", type=UUID, required=True, help="Organization id")
    report.add_argument("--start", type=_date, default=None, help="Period start (default: -30d)")
    report.add_argument("--end", type=_date, default=None, help="Period end (default: now)")

    export = subparsers.add_parser("export", help="Export an organization's audit logs")
    export.add_argument("--org", type=UUID, required=True, help="Organization id")
    export.add_argument("--format", choices=["json", "csv"], default="json")
    export.add_argument("--output", type=Path, default=None, help="File to write (default: stdout)")

    cleanup = subparsers.add_parser("cleanup-backups", help="Delete expired scheduled backups")
    cleanup.add_argument("--org", type=UUID, required=True, help="Organization id")
    cleanup.add_argument(
        "--frequency", choices=["daily", "weekly", "monthly"], required=True
    )

    return parser.parse_args(argv)


async def run_command(args: argparse.Namespace) -> int:
    """Run one subcommand against an open database session."""
    from ..api.deps import get_session_factory
    from ..core.backups import BackupManager

    settings = get_settings()
    audit = get_audit_service()
    logger = logging.getLogger(__name__)

    async with get_session_factory()() as session:
        if args.command == "retain":
            days = args.days or settings.audit_retention_days
            deleted = await audit.retain_audit_logs(session, days)
            await session.commit()
            logger.info(f"Retention complete: {deleted} audit logs deleted")

        elif args.command == "report":
            end = args.end or datetime.now(timezone.utc)
            start = args.start or end - timedelta(days=30)
            report = await audit.generate_compliance_report(session, args.org, start, end)
            print(report.model_dump_json(indent=2))

        elif args.command == "export":
            content = await audit.export_audit_logs(session, args.org, args.format)
            if args.output:
                args.output.write_text(content, encoding="utf-8")
                logger.info(f"Audit logs written to {args.output}")
            else:
                print(content)

        elif args.command == "cleanup-backups":
            manager = BackupManager(settings.backup_dir)
            removed = await manager.cleanup_old_backups(session, args.org, args.frequency)
            await session.commit()
            logger.info(f"Cleanup complete: {removed} backups removed")

    return 0


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Async main function.

    Returns:
        Exit code
    """
    args = parse_args(argv)

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    from ..api.deps import close_db, init_db

    try:
        await init_db()
        return await run_command(args)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        return 1

    finally:
        await close_db()


def main() -> None:
    """Main CLI entrypoint."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
