"""Tests for the weekly/monthly aggregation engine against in-memory fakes."""
import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest

from kabuchart.aggregation.engine import (
    AggregationEngine,
    BucketState,
    bucket_state,
    daily_cycle_buckets,
)
from kabuchart.aggregation.calendar import bucket_for
from kabuchart.aggregation.types import Bucket, PeriodKind
from kabuchart.core.exceptions import FatalConfigError
from tests.conftest import FakeAggregateStore, FakeBarSource, make_bar

WEEK = PeriodKind.WEEK
MONTH = PeriodKind.MONTH


def weekday_bars(symbol: str, start: date, end: date, volume: int = 100):
    """One valid bar per weekday, prices drifting up by 1 a day."""
    bars = []
    day = start
    price = 100
    while day <= end:
        if day.weekday() < 5:
            bars.append(make_bar(day, price, price + 5, price - 2, price + 1, volume, symbol=symbol))
            price += 1
        day += timedelta(days=1)
    return bars


def engine_for(source, store, **kwargs) -> AggregationEngine:
    kwargs.setdefault("max_concurrency", 2)
    kwargs.setdefault("fetch_timeout", 5)
    return AggregationEngine(source=source, store=store, **kwargs)


class SlowSource(FakeBarSource):
    async def fetch_daily_bars(self, symbol, from_date, to_date):
        await asyncio.sleep(1)
        return await super().fetch_daily_bars(symbol, from_date, to_date)


class FailingStore(FakeAggregateStore):
    async def upsert_aggregate_bars(self, bars):
        raise ConnectionError("database is gone")


class TestBucketState:
    def test_current_week_is_open(self):
        bucket = bucket_for(date(2025, 9, 3), WEEK)
        assert bucket_state(bucket, date(2025, 9, 3)) is BucketState.OPEN

    def test_prior_week_finalizes_on_saturday(self):
        prior = Bucket(WEEK, date(2025, 8, 24), date(2025, 8, 30))
        assert bucket_state(prior, date(2025, 9, 6)) is BucketState.FINALIZING

    def test_prior_week_closed_on_friday(self):
        prior = Bucket(WEEK, date(2025, 8, 24), date(2025, 8, 30))
        assert bucket_state(prior, date(2025, 9, 5)) is BucketState.CLOSED

    def test_prior_month_finalizes_on_the_first(self):
        prior = Bucket(MONTH, date(2025, 8, 1), date(2025, 8, 31))
        assert bucket_state(prior, date(2025, 9, 1)) is BucketState.FINALIZING
        assert bucket_state(prior, date(2025, 9, 2)) is BucketState.CLOSED

    def test_older_buckets_stay_closed(self):
        old = Bucket(MONTH, date(2025, 7, 1), date(2025, 7, 31))
        assert bucket_state(old, date(2025, 9, 1)) is BucketState.CLOSED

    def test_daily_cycle_buckets_on_saturday(self):
        buckets = daily_cycle_buckets(date(2025, 9, 6))
        assert [(b.kind, b.start) for b in buckets] == [
            (WEEK, date(2025, 8, 31)),
            (MONTH, date(2025, 9, 1)),
            (WEEK, date(2025, 8, 24)),
        ]

    def test_daily_cycle_buckets_on_midweek(self):
        buckets = daily_cycle_buckets(date(2025, 9, 3))
        assert [(b.kind, b.start) for b in buckets] == [
            (WEEK, date(2025, 8, 31)),
            (MONTH, date(2025, 9, 1)),
        ]


class TestDailyCycle:
    @pytest.mark.asyncio
    async def test_recomputes_current_week_and_month(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 9, 1), date(2025, 9, 3)))
        store = FakeAggregateStore()

        summary = await engine_for(source, store).run_daily_cycle(
            as_of=date(2025, 9, 3), symbols=["7203"]
        )

        assert summary.recomputed == 2
        assert summary.finalized == 0
        assert summary.failed_symbols == []
        week = store.get("7203", date(2025, 8, 31), WEEK)
        month = store.get("7203", date(2025, 9, 1), MONTH)
        assert (week.open, week.high, week.low, week.close, week.volume) == (
            month.open, month.high, month.low, month.close, month.volume
        )
        assert week.open == Decimal("100")
        assert week.close == Decimal("103")
        assert week.volume == 300

    @pytest.mark.asyncio
    async def test_saturday_finalizes_prior_week(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 8, 25), date(2025, 9, 5)))
        store = FakeAggregateStore()

        summary = await engine_for(source, store).run_daily_cycle(
            as_of=date(2025, 9, 6), symbols=["7203"]
        )

        assert summary.finalized == 1
        assert summary.recomputed == 2
        prior = store.get("7203", date(2025, 8, 24), WEEK)
        assert prior is not None
        assert prior.volume == 500
        # one fetch spanning every planned bucket
        assert source.calls == [("7203", date(2025, 8, 24), date(2025, 9, 30))]

    @pytest.mark.asyncio
    async def test_friday_does_not_finalize(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 8, 25), date(2025, 9, 5)))
        store = FakeAggregateStore()

        summary = await engine_for(source, store).run_daily_cycle(
            as_of=date(2025, 9, 5), symbols=["7203"]
        )

        assert summary.finalized == 0
        assert store.get("7203", date(2025, 8, 24), WEEK) is None

    @pytest.mark.asyncio
    async def test_first_of_month_finalizes_prior_month(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 9, 1), date(2025, 10, 1)))
        store = FakeAggregateStore()

        summary = await engine_for(source, store).run_daily_cycle(
            as_of=date(2025, 10, 1), symbols=["7203"]
        )

        assert summary.finalized == 1
        september = store.get("7203", date(2025, 9, 1), MONTH)
        assert september.volume == 2200  # 22 weekdays
        assert store.get("7203", date(2025, 10, 1), MONTH).volume == 100

    @pytest.mark.asyncio
    async def test_second_of_month_does_not_finalize(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 9, 1), date(2025, 10, 2)))
        store = FakeAggregateStore()

        summary = await engine_for(source, store).run_daily_cycle(
            as_of=date(2025, 10, 2), symbols=["7203"]
        )

        assert summary.finalized == 0
        assert store.get("7203", date(2025, 9, 1), MONTH) is None

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 8, 25), date(2025, 9, 5)))
        store = FakeAggregateStore()
        engine = engine_for(source, store)

        await engine.run_daily_cycle(as_of=date(2025, 9, 6), symbols=["7203"])
        first = dict(store.rows)
        await engine.run_daily_cycle(as_of=date(2025, 9, 6), symbols=["7203"])

        assert store.rows == first

    @pytest.mark.asyncio
    async def test_universe_from_symbols_updated_on(self):
        bars = weekday_bars("7203", date(2025, 9, 1), date(2025, 9, 5))
        bars += weekday_bars("6758", date(2025, 9, 1), date(2025, 9, 5))
        source = FakeBarSource(bars)
        store = FakeAggregateStore(updated={date(2025, 9, 5): ["7203"]})

        summary = await engine_for(source, store).run_daily_cycle(
            as_of=date(2025, 9, 6), updated_on=date(2025, 9, 5)
        )

        assert summary.symbols == 1
        assert {key[0] for key in store.rows} == {"7203"}

    @pytest.mark.asyncio
    async def test_empty_universe_is_fatal(self):
        engine = engine_for(FakeBarSource(), FakeAggregateStore())
        with pytest.raises(FatalConfigError):
            await engine.run_daily_cycle(as_of=date(2025, 9, 3))

    @pytest.mark.asyncio
    async def test_universe_lookup_failure_is_fatal(self):
        store = FakeAggregateStore()

        async def broken(day):
            raise ConnectionError("db down")

        store.list_symbols_updated_on = broken
        with pytest.raises(FatalConfigError):
            await engine_for(FakeBarSource(), store).run_daily_cycle(as_of=date(2025, 9, 3))


class TestFailureIsolation:
    @pytest.mark.asyncio
    async def test_failed_fetch_skips_only_that_symbol(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 9, 1), date(2025, 9, 3)))
        source.failures["6758"] = RuntimeError("connection reset")
        store = FakeAggregateStore()

        summary = await engine_for(source, store).run_daily_cycle(
            as_of=date(2025, 9, 3), symbols=["6758", "7203"]
        )

        assert summary.failed_symbols == ["6758"]
        assert summary.recomputed == 2
        assert store.get("7203", date(2025, 8, 31), WEEK) is not None

    @pytest.mark.asyncio
    async def test_fetch_timeout_marks_symbol_failed(self):
        source = SlowSource(weekday_bars("7203", date(2025, 9, 1), date(2025, 9, 3)))
        store = FakeAggregateStore()

        summary = await engine_for(source, store, fetch_timeout=0.01).run_daily_cycle(
            as_of=date(2025, 9, 3), symbols=["7203"]
        )

        assert summary.failed_symbols == ["7203"]
        assert store.rows == {}

    @pytest.mark.asyncio
    async def test_write_failure_marks_symbol_failed(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 9, 1), date(2025, 9, 3)))

        summary = await engine_for(source, FailingStore()).run_daily_cycle(
            as_of=date(2025, 9, 3), symbols=["7203"]
        )

        assert summary.failed_symbols == ["7203"]
        assert summary.recomputed == 0

    @pytest.mark.asyncio
    async def test_symbol_without_data_skips_write(self):
        store = FakeAggregateStore()

        summary = await engine_for(FakeBarSource(), store).run_daily_cycle(
            as_of=date(2025, 9, 3), symbols=["7203"]
        )

        assert summary.skipped_empty == 2
        assert store.write_calls == 0
        assert summary.failed_symbols == []

    @pytest.mark.asyncio
    async def test_invalid_rows_are_counted_not_fatal(self):
        bars = weekday_bars("7203", date(2025, 9, 1), date(2025, 9, 2))
        bars.append(make_bar(date(2025, 9, 3), 0, 0, 0, 0, 500))
        store = FakeAggregateStore()

        summary = await engine_for(FakeBarSource(bars), store).run_daily_cycle(
            as_of=date(2025, 9, 3), symbols=["7203"]
        )

        assert summary.rejected_rows == 1
        assert store.get("7203", date(2025, 9, 1), MONTH).volume == 200

    @pytest.mark.asyncio
    async def test_writes_are_batched(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 9, 1), date(2025, 9, 3)))
        store = FakeAggregateStore()

        await engine_for(source, store, batch_size=1).run_daily_cycle(
            as_of=date(2025, 9, 3), symbols=["7203"]
        )

        assert store.write_calls == 2


class TestExplicitRuns:
    @pytest.mark.asyncio
    async def test_finalize_prior_period(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 8, 25), date(2025, 8, 29)))
        store = FakeAggregateStore()

        summary = await engine_for(source, store).finalize_prior_period(
            ["7203"], date(2025, 9, 6), WEEK
        )

        assert summary.finalized == 1
        assert list(store.rows) == [("7203", date(2025, 8, 24), WEEK)]

    @pytest.mark.asyncio
    async def test_recompute_current_periods(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 9, 1), date(2025, 9, 3)))
        store = FakeAggregateStore()

        summary = await engine_for(source, store).recompute_current_periods(["7203"], date(2025, 9, 3))

        assert summary.recomputed == 2

    @pytest.mark.asyncio
    async def test_recompute_range(self):
        source = FakeBarSource(weekday_bars("7203", date(2025, 9, 1), date(2025, 9, 12)))
        store = FakeAggregateStore()

        summary = await engine_for(source, store).recompute_range(
            ["7203"], date(2025, 9, 1), date(2025, 9, 14)
        )

        # weeks 8/31 and 9/7 plus September; week 9/14 has no bars yet
        assert summary.recomputed == 3
        assert summary.skipped_empty == 1

    @pytest.mark.asyncio
    async def test_recompute_range_rejects_reversed_dates(self):
        with pytest.raises(ValueError):
            await engine_for(FakeBarSource(), FakeAggregateStore()).recompute_range(
                ["7203"], date(2025, 9, 14), date(2025, 9, 1)
            )

    @pytest.mark.asyncio
    async def test_rebuild_history_span(self):
        source = FakeBarSource()

        await engine_for(source, FakeAggregateStore()).rebuild_history(
            ["7203"], years_back=2, as_of=date(2025, 9, 3)
        )

        # Jan 1st 2024 is a Monday; its week starts on Dec 31st 2023
        assert source.calls == [("7203", date(2023, 12, 31), date(2025, 9, 30))]

    @pytest.mark.asyncio
    async def test_rebuild_history_requires_a_year(self):
        with pytest.raises(ValueError):
            await engine_for(FakeBarSource(), FakeAggregateStore()).rebuild_history(
                ["7203"], years_back=0, as_of=date(2025, 9, 3)
            )


class RecordingSource(FakeBarSource):
    """Logs each fetch and tracks how many are in flight at once."""

    def __init__(self, bars, events=None, delay: float = 0):
        super().__init__(bars)
        self.events = events if events is not None else []
        self.delay = delay
        self.in_flight = 0
        self.peak = 0

    async def fetch_daily_bars(self, symbol, from_date, to_date):
        self.events.append(("fetch", symbol))
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            return await super().fetch_daily_bars(symbol, from_date, to_date)
        finally:
            self.in_flight -= 1


class RecordingStore(FakeAggregateStore):
    def __init__(self, events, updated=None):
        super().__init__(updated)
        self.events = events

    async def upsert_aggregate_bars(self, bars):
        self.events.append(("write", bars[0].symbol))
        return await super().upsert_aggregate_bars(bars)


class TestThrottleAndWorkerPool:
    @pytest.mark.asyncio
    async def test_throttle_awaited_before_every_fetch_and_write(self):
        events = []

        async def throttle():
            events.append(("throttle", None))

        bars = weekday_bars("7203", date(2025, 8, 25), date(2025, 9, 5))
        bars += weekday_bars("6758", date(2025, 8, 25), date(2025, 9, 5))
        source = RecordingSource(bars, events)
        store = RecordingStore(events)

        await engine_for(source, store, max_concurrency=1, throttle=throttle, batch_size=1).run_daily_cycle(
            as_of=date(2025, 9, 6), symbols=["7203", "6758"]
        )

        io_calls = [i for i, (kind, _) in enumerate(events) if kind in ("fetch", "write")]
        # 2 fetches plus 3 single-bucket writes per symbol
        assert len(io_calls) == 8
        assert all(events[i - 1][0] == "throttle" for i in io_calls)
        assert sum(1 for kind, _ in events if kind == "throttle") == 8

    @pytest.mark.asyncio
    async def test_throttle_awaited_before_universe_lookup(self):
        calls = []

        async def throttle():
            calls.append("throttle")

        store = FakeAggregateStore(updated={date(2025, 9, 3): ["7203"]})
        source = FakeBarSource(weekday_bars("7203", date(2025, 9, 1), date(2025, 9, 3)))

        await engine_for(source, store, throttle=throttle).run_daily_cycle(as_of=date(2025, 9, 3))

        # universe lookup, one fetch, one batched write
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_in_flight_fetches_bounded_by_worker_pool(self):
        symbols = [f"{1000 + i}" for i in range(8)]
        bars = [bar for s in symbols for bar in weekday_bars(s, date(2025, 9, 1), date(2025, 9, 3))]
        source = RecordingSource(bars, delay=0.01)
        store = FakeAggregateStore()

        summary = await engine_for(source, store, max_concurrency=2).run_daily_cycle(
            as_of=date(2025, 9, 3), symbols=symbols
        )

        assert source.peak == 2
        assert len(source.calls) == 8
        assert summary.recomputed == 16

    @pytest.mark.asyncio
    async def test_single_worker_processes_symbols_one_at_a_time(self):
        symbols = ["7203", "6758", "9984"]
        bars = [bar for s in symbols for bar in weekday_bars(s, date(2025, 9, 1), date(2025, 9, 3))]
        source = RecordingSource(bars, delay=0.01)

        await engine_for(source, FakeAggregateStore(), max_concurrency=1).run_daily_cycle(
            as_of=date(2025, 9, 3), symbols=symbols
        )

        assert source.peak == 1
