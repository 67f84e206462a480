"""
Windowed request counters for the API key gate.

A WindowedCounter pairs a window shape (fixed N-second window or calendar
day) with a CounterStore. The store does the atomic "add one if below the
ceiling" operation; where the counts live is its business:

- SqlCounterStore keeps them in api_key_counters and relies on conditional
  UPDATE statements, so concurrent requests cannot overshoot the ceiling.
- MemoryCounterStore keeps them in process behind an asyncio.Lock.
"""
import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Protocol, Tuple
from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core.clock import to_utc
from answly.features.api_keys.models import ApiKeyCounter


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

RATE_BUCKET = "rate"
DAILY_BUCKET = "daily"


# ============================================================================
# Window shapes
# ============================================================================

class FixedWindow:
    """Windows of ``seconds`` length aligned to the Unix epoch."""

    def __init__(self, seconds: int):
        if seconds <= 0:
            raise ValueError("window length must be positive")
        self.length = timedelta(seconds=seconds)

    def start_of(self, now: datetime) -> datetime:
        elapsed = to_utc(now) - EPOCH
        return EPOCH + (elapsed // self.length) * self.length

    def end_of(self, start: datetime) -> datetime:
        return start + self.length


class CalendarDay:
    """UTC calendar days."""

    def start_of(self, now: datetime) -> datetime:
        return to_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)

    def end_of(self, start: datetime) -> datetime:
        return start + timedelta(days=1)


class Window(Protocol):
    def start_of(self, now: datetime) -> datetime:
        ...

    def end_of(self, start: datetime) -> datetime:
        ...


@dataclass(frozen=True)
class WindowState:
    """Outcome of one hit against a windowed counter."""
    bucket: str
    window_start: datetime
    window_end: datetime
    count: int
    ceiling: int
    allowed: bool

    def retry_after(self, now: datetime) -> int:
        """Whole seconds until the window closes."""
        return max(0, math.ceil((self.window_end - to_utc(now)).total_seconds()))


# ============================================================================
# Stores
# ============================================================================

class CounterStore(Protocol):
    async def consume(self, key_id: str, bucket: str, window_start: datetime, ceiling: int) -> Tuple[bool, int]:
        """Add one hit if the window is below ``ceiling``; returns (allowed, count)."""
        ...

    async def release(self, key_id: str, bucket: str, window_start: datetime) -> None:
        """Give back one hit taken in ``window_start``."""
        ...


class SqlCounterStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _row(self, key_id: str, bucket: str):
        return and_(ApiKeyCounter.api_key_id == key_id, ApiKeyCounter.bucket == bucket)

    async def _update(self, stmt) -> bool:
        result = await self.db.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount == 1

    async def _count(self, key_id: str, bucket: str) -> int:
        result = await self.db.execute(select(ApiKeyCounter.count).where(self._row(key_id, bucket)))
        return result.scalar_one_or_none() or 0

    async def consume(self, key_id: str, bucket: str, window_start: datetime, ceiling: int) -> Tuple[bool, int]:
        if ceiling <= 0:
            return False, await self._count(key_id, bucket)

        # Same window with room left
        if await self._update(
            update(ApiKeyCounter)
            .where(self._row(key_id, bucket), ApiKeyCounter.window_start == window_start, ApiKeyCounter.count < ceiling)
            .values(count=ApiKeyCounter.count + 1)
        ):
            return True, await self._count(key_id, bucket)

        # Stale window: start over
        if await self._update(
            update(ApiKeyCounter)
            .where(self._row(key_id, bucket), ApiKeyCounter.window_start < window_start)
            .values(window_start=window_start, count=1)
        ):
            return True, 1

        result = await self.db.execute(select(ApiKeyCounter).where(self._row(key_id, bucket)))
        if result.scalars().first() is None:
            self.db.add(ApiKeyCounter(api_key_id=key_id, bucket=bucket, window_start=window_start, count=1))
            await self.db.flush()
            return True, 1

        return False, await self._count(key_id, bucket)

    async def release(self, key_id: str, bucket: str, window_start: datetime) -> None:
        await self._update(
            update(ApiKeyCounter)
            .where(self._row(key_id, bucket), ApiKeyCounter.window_start == window_start, ApiKeyCounter.count > 0)
            .values(count=ApiKeyCounter.count - 1)
        )


class MemoryCounterStore:
    """Process-local counters; only correct with a single worker."""

    def __init__(self):
        self._counts: Dict[Tuple[str, str], Tuple[datetime, int]] = {}
        self._lock = asyncio.Lock()

    async def consume(self, key_id: str, bucket: str, window_start: datetime, ceiling: int) -> Tuple[bool, int]:
        async with self._lock:
            start, count = self._counts.get((key_id, bucket), (EPOCH, 0))
            if start < window_start:
                start, count = window_start, 0
            if count >= ceiling:
                return False, count
            self._counts[(key_id, bucket)] = (start, count + 1)
            return True, count + 1

    async def release(self, key_id: str, bucket: str, window_start: datetime) -> None:
        async with self._lock:
            start, count = self._counts.get((key_id, bucket), (EPOCH, 0))
            if start == window_start and count > 0:
                self._counts[(key_id, bucket)] = (start, count - 1)


# ============================================================================
# Windowed counter
# ============================================================================

class WindowedCounter:
    def __init__(self, bucket: str, window: Window, store: CounterStore):
        self.bucket = bucket
        self.window = window
        self.store = store

    async def hit(self, key_id: str, ceiling: int, now: datetime) -> WindowState:
        start = self.window.start_of(now)
        allowed, count = await self.store.consume(key_id, self.bucket, start, ceiling)
        return WindowState(
            bucket=self.bucket,
            window_start=start,
            window_end=self.window.end_of(start),
            count=count,
            ceiling=ceiling,
            allowed=allowed,
        )

    async def release(self, key_id: str, state: WindowState) -> None:
        if state.allowed:
            await self.store.release(key_id, self.bucket, state.window_start)
