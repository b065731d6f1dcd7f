"""CLI command for one healing pass over placeholder images.

Usage:
    python -m mealforge.cli.heal_placeholders [OPTIONS]

Examples:
    # Heal tasks whose placeholder is older than HEALING_INTERVAL_SECONDS
    python -m mealforge.cli.heal_placeholders

    # Heal every eligible task regardless of age
    python -m mealforge.cli.heal_placeholders --min-age 0
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from mealforge.core import timezone  # noqa: F401
from mealforge.core.config import Settings, configure_logging
from mealforge.core.database import setup_db_session
from mealforge.services.generation.factory import build_services
from mealforge.uow import create_uow_factory
from mealforge.workers.healing_worker import heal_batch

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Retry image generation for placeholder recipes")

    parser.add_argument(
        "--min-age",
        type=float,
        default=None,
        help="Only heal tasks last updated at least this many seconds ago",
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
        Exit code: 0 (success), 1 (error), 2 (some tasks errored)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    services = build_services(settings, create_uow_factory(session_factory))

    try:
        await services.hash_store.warm()
        summary = await heal_batch(services, min_age_seconds=args.min_age)
    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    print("\n" + "=" * 60)
    print("Placeholder Healing Summary")
    print("=" * 60)
    print(f"Tasks selected: {summary.selected}")
    print(f"Healed: {summary.healed}")
    print(f"Still placeholder: {summary.still_placeholder}")
    print(f"Skipped: {summary.skipped}")
    print(f"Errors: {summary.errors}")
    print("=" * 60 + "\n")

    return 2 if summary.errors else 0


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
