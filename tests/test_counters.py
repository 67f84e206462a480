"""
Unit tests for window shapes and both counter stores.
"""
from datetime import datetime, timedelta, timezone

import pytest

from answly.features.api_keys.counters import (
    CalendarDay,
    FixedWindow,
    MemoryCounterStore,
    SqlCounterStore,
    WindowedCounter,
)
from answly.features.api_keys.models import ApiKeyCounter
from answly.features.api_keys.service import ApiKeyService


# ============================================================================
# Windows
# ============================================================================


class TestWindows:

    def test_fixed_window_is_epoch_aligned(self):
        window = FixedWindow(60)
        now = datetime(2026, 3, 10, 12, 0, 59, 999999, tzinfo=timezone.utc)

        assert window.start_of(now) == datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        assert window.end_of(window.start_of(now)) == datetime(2026, 3, 10, 12, 1, tzinfo=timezone.utc)

    def test_fixed_window_odd_length(self):
        window = FixedWindow(7)
        now = datetime(1970, 1, 1, 0, 0, 20, tzinfo=timezone.utc)

        assert window.start_of(now) == datetime(1970, 1, 1, 0, 0, 14, tzinfo=timezone.utc)

    def test_fixed_window_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            FixedWindow(0)

    def test_calendar_day_uses_utc(self):
        day = CalendarDay()
        # 23:30 at UTC-5 is already the next UTC day
        now = datetime(2026, 3, 10, 23, 30, tzinfo=timezone(timedelta(hours=-5)))

        assert day.start_of(now) == datetime(2026, 3, 11, tzinfo=timezone.utc)
        assert day.end_of(day.start_of(now)) == datetime(2026, 3, 12, tzinfo=timezone.utc)

    def test_naive_datetimes_are_utc(self):
        assert FixedWindow(60).start_of(datetime(2026, 3, 10, 12, 0, 30)) == datetime(
            2026, 3, 10, 12, 0, tzinfo=timezone.utc
        )


# ============================================================================
# Stores
# ============================================================================


@pytest.fixture
async def api_key(db, clock, organization, admin):
    service = ApiKeyService(db, clock, SqlCounterStore(db))
    key, _raw = await service.create_api_key(organization.id, admin.id, "counter-test")
    await db.commit()
    return key


@pytest.fixture(params=["sql", "memory"])
def counter_store(request, db):
    if request.param == "sql":
        return SqlCounterStore(db)
    return MemoryCounterStore()


class TestCounterStores:

    async def test_ceiling_is_enforced(self, counter_store, api_key, clock):
        counter = WindowedCounter("rate", FixedWindow(60), counter_store)

        states = [await counter.hit(api_key.id, 3, clock.now()) for _ in range(4)]

        assert [s.allowed for s in states] == [True, True, True, False]
        assert [s.count for s in states] == [1, 2, 3, 3]
        assert states[-1].retry_after(clock.now()) == 30

    async def test_new_window_resets(self, counter_store, api_key, clock):
        counter = WindowedCounter("rate", FixedWindow(60), counter_store)

        for _ in range(2):
            await counter.hit(api_key.id, 2, clock.now())
        assert not (await counter.hit(api_key.id, 2, clock.now())).allowed

        clock.advance(seconds=30)
        state = await counter.hit(api_key.id, 2, clock.now())
        assert state.allowed
        assert state.count == 1

    async def test_release_gives_slot_back(self, counter_store, api_key, clock):
        counter = WindowedCounter("rate", FixedWindow(60), counter_store)

        first = await counter.hit(api_key.id, 1, clock.now())
        assert not (await counter.hit(api_key.id, 1, clock.now())).allowed

        await counter.release(api_key.id, first)
        assert (await counter.hit(api_key.id, 1, clock.now())).allowed

    async def test_release_of_denied_hit_is_noop(self, counter_store, api_key, clock):
        counter = WindowedCounter("rate", FixedWindow(60), counter_store)

        await counter.hit(api_key.id, 1, clock.now())
        denied = await counter.hit(api_key.id, 1, clock.now())
        await counter.release(api_key.id, denied)

        assert not (await counter.hit(api_key.id, 1, clock.now())).allowed

    async def test_zero_ceiling_denies(self, counter_store, api_key, clock):
        counter = WindowedCounter("daily", CalendarDay(), counter_store)

        assert not (await counter.hit(api_key.id, 0, clock.now())).allowed

    async def test_buckets_are_independent(self, counter_store, api_key, clock):
        rate = WindowedCounter("rate", FixedWindow(60), counter_store)
        daily = WindowedCounter("daily", CalendarDay(), counter_store)

        await rate.hit(api_key.id, 1, clock.now())
        assert not (await rate.hit(api_key.id, 1, clock.now())).allowed
        assert (await daily.hit(api_key.id, 1, clock.now())).allowed


class TestSqlCounterStore:

    async def test_missing_row_is_created(self, db, api_key, clock):
        store = SqlCounterStore(db)
        start = FixedWindow(60).start_of(clock.now())

        allowed, count = await store.consume(api_key.id, "burst", start, 5)
        await db.commit()

        assert (allowed, count) == (True, 1)
        row = await db.get(ApiKeyCounter, (api_key.id, "burst"))
        assert row.count == 1

    async def test_counts_survive_across_sessions(self, db, api_key, clock):
        from answly.core.database.engine import AsyncSessionLocal

        start = FixedWindow(60).start_of(clock.now())
        for _ in range(2):
            async with AsyncSessionLocal() as session:
                await SqlCounterStore(session).consume(api_key.id, "rate", start, 2)
                await session.commit()

        async with AsyncSessionLocal() as session:
            allowed, count = await SqlCounterStore(session).consume(api_key.id, "rate", start, 2)

        assert (allowed, count) == (False, 2)
