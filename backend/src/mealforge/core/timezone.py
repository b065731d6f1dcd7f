"""UTC timezone enforcement and timestamp helpers.

Importing this module sets the TZ environment variable to UTC. Persisted
timestamps are naive datetimes in UTC so they compare identically on
PostgreSQL and SQLite.
"""

import os
from datetime import datetime, timezone

os.environ["TZ"] = "UTC"


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def billing_period_key(moment: datetime) -> str:
    """Return the calendar-month billing period key (``YYYY-MM``) for a timestamp."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return f"{moment.year:04d}-{moment.month:02d}"
