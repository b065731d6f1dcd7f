"""CLI command for finishing jobs orphaned by a crashed or stopped process.

Run it only while no API process is serving jobs against the same database:
every pending or running job is treated as interrupted.

Usage:
    python -m mealforge.cli.recover_jobs [OPTIONS]

Examples:
    # Recover all orphaned jobs
    python -m mealforge.cli.recover_jobs

    # Limit recovery to 100 jobs
    python -m mealforge.cli.recover_jobs --limit 100

    # Dry run (no database writes)
    python -m mealforge.cli.recover_jobs --dry-run
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from mealforge.core import timezone  # noqa: F401
from mealforge.core.config import Settings, configure_logging
from mealforge.core.database import setup_db_session
from mealforge.services.quota.ledger import QuotaLedger
from mealforge.services.quota.tiers import StaticTierConfigSource
from mealforge.uow import create_uow_factory
from mealforge.workers.recovery import recover_orphaned_jobs

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Finish jobs left pending or running by a previous process",
        epilog="Unfinished tasks are failed and their reserved quota is released",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=1000,
        help="Maximum number of jobs to recover (default: 1000)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Count orphaned jobs without database writes",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (partial success)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    logger.info("cli.started", limit=args.limit, dry_run=args.dry_run)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    ledger = QuotaLedger(
        uow_factory,
        StaticTierConfigSource(settings.account_tiers, default_tier=settings.default_tier),
    )

    try:
        result = await recover_orphaned_jobs(
            uow_factory, ledger, limit=args.limit, dry_run=args.dry_run
        )

        print("\n" + "=" * 60)
        print("Job Recovery Summary")
        print("=" * 60)
        print(f"Jobs recovered: {result.jobs_recovered}")
        print(f"Tasks failed: {result.tasks_failed}")
        print(f"Quota units released: {result.units_released}")

        if result.errors:
            print(f"\nErrors encountered: {len(result.errors)}")
            for error in result.errors[:5]:
                print(f"  - {error}")
            if len(result.errors) > 5:
                print(f"  ... and {len(result.errors) - 5} more errors")

        if args.dry_run:
            print("\n[DRY RUN] No changes were persisted to database")

        print("=" * 60 + "\n")

        if not result.errors:
            logger.info("cli.success", jobs=result.jobs_recovered)
            return 0
        elif result.jobs_recovered > 0:
            logger.warning("cli.partial_success", errors=len(result.errors))
            return 2
        else:
            logger.error("cli.failure", errors=len(result.errors))
            return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nRecovery interrupted by user", file=sys.stderr)
        return 130  # Standard exit code for SIGINT

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
