"""
Clock abstraction used wherever "now" matters (grant expiry, rate windows).

Requests read the clock from ``app.state.clock`` through ``get_clock``, so
tests can swap in a ``FrozenClock`` for routes and middleware alike.
"""
from datetime import datetime, timedelta, timezone
from typing import Protocol
from fastapi import Request


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._now = to_utc(start) if start else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = to_utc(value)

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now


_system_clock = SystemClock()


def get_clock(request: Request) -> Clock:
    """FastAPI dependency returning the app clock, the wall clock unless one is set."""
    return getattr(request.app.state, "clock", _system_clock)
