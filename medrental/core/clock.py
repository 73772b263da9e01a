# medrental/core/clock.py
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Naive UTC timestamp, matching the naive UTC columns of the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_now() -> datetime:
    """FastAPI dependency: one timestamp per request."""
    return utc_now()
