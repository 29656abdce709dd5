"""
Time sources.

Everything that stamps a location record asks a clock for the time instead of
reading the wall clock directly, so tests can pin "now".
"""

from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FixedClock:
    """
    Clock frozen at a given instant.
    
    Only moves when advance() is called.
    """

    def __init__(self, instant: datetime):
        self.instant = ensure_utc(instant)

    def __call__(self) -> datetime:
        return self.instant

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.instant = self.instant + timedelta(seconds=seconds, **kwargs)
        return self.instant


def get_clock() -> Clock:
    """
    FastAPI dependency returning the clock used for ingestion.
    
    Override with app.dependency_overrides[get_clock] in tests.
    """
    return utc_now
