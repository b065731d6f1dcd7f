"""CLI entry point for mealforge.cli module.

Enables execution via: python -m mealforge.cli (same as mealforge.cli.recover_jobs)
"""

from mealforge.cli.recover_jobs import main

if __name__ == "__main__":
    raise SystemExit(main())
