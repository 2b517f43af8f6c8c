"""
Weekly/monthly aggregation engine.

Pulls daily bars for each instrument, screens and reduces them per bucket,
and upserts the resulting period bars. Instruments are independent: one
failing never aborts the batch. Only an empty universe is fatal.

Bucket lifecycle is derived, never stored:
- OPEN: the bucket's end date is today or later; recomputed every cycle.
- FINALIZING: today is the finalize day for the bucket's kind and the
  bucket is the one just before the current one; recomputed one last time.
- CLOSED: anything else; only an explicit rebuild touches it again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional, Protocol, Sequence

from kabuchart.aggregation.calendar import (
    bucket_for,
    exchange_today,
    is_finalize_day,
    iter_buckets,
    previous_bucket,
)
from kabuchart.aggregation.reducer import reduce_bars, screen_bars
from kabuchart.aggregation.types import Bucket, PeriodBar, PeriodKind, PriceBar
from kabuchart.core.config import settings
from kabuchart.core.exceptions import FatalConfigError, TransientIOError
from kabuchart.core.throttle import RateLimiter

logger = logging.getLogger(__name__)

AGGREGATE_KINDS = (PeriodKind.WEEK, PeriodKind.MONTH)
PROGRESS_EVERY = 100


class DailyBarSource(Protocol):
    async def fetch_daily_bars(self, symbol: str, from_date: date, to_date: date) -> list[PriceBar]:
        ...


class AggregateBarStore(Protocol):
    async def upsert_aggregate_bars(self, bars: Sequence[PeriodBar]) -> int:
        ...

    async def list_symbols_updated_on(self, day: date) -> list[str]:
        ...


class BucketState(str, Enum):
    OPEN = "open"
    FINALIZING = "finalizing"
    CLOSED = "closed"


def bucket_state(bucket: Bucket, today: date) -> BucketState:
    if bucket.is_open(today):
        return BucketState.OPEN
    if is_finalize_day(today, bucket.kind) and bucket == previous_bucket(bucket_for(today, bucket.kind)):
        return BucketState.FINALIZING
    return BucketState.CLOSED


def daily_cycle_buckets(today: date) -> list[Bucket]:
    """Buckets the routine cycle touches on the given day, current ones first."""
    current = [bucket_for(today, kind) for kind in AGGREGATE_KINDS]
    prior = [
        previous_bucket(bucket)
        for bucket in current
        if bucket_state(previous_bucket(bucket), today) is BucketState.FINALIZING
    ]
    return current + prior


@dataclass
class AggregationSummary:
    """Counters reported at the end of every run."""

    symbols: int = 0
    recomputed: int = 0
    finalized: int = 0
    skipped_empty: int = 0
    rejected_rows: int = 0
    failed_symbols: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "symbols": self.symbols,
            "recomputed": self.recomputed,
            "finalized": self.finalized,
            "skipped_empty": self.skipped_empty,
            "rejected_rows": self.rejected_rows,
            "failed": len(self.failed_symbols),
        }


@dataclass(frozen=True)
class _PlannedBucket:
    bucket: Bucket
    finalizing: bool = False


class AggregationEngine:
    """Recompute period bars for a set of instruments."""

    def __init__(
        self,
        source: DailyBarSource,
        store: AggregateBarStore,
        max_concurrency: Optional[int] = None,
        fetch_timeout: Optional[float] = None,
        throttle: Optional[Callable[[], Awaitable[None]]] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self.source = source
        self.store = store
        self.max_concurrency = max(
            settings.AGGREGATION_MAX_CONCURRENCY if max_concurrency is None else max_concurrency,
            1,
        )
        self.fetch_timeout = (
            settings.AGGREGATION_FETCH_TIMEOUT_SEC if fetch_timeout is None else fetch_timeout
        )
        self.throttle = throttle or RateLimiter(settings.AGGREGATION_THROTTLE_SEC).wait
        self.batch_size = max(settings.UPSERT_BATCH_SIZE if batch_size is None else batch_size, 1)

    async def recompute_current_periods(
        self, symbols: Sequence[str], as_of: date
    ) -> AggregationSummary:
        """Recompute the week and month containing as_of, even though they are not over yet."""
        plan = [_PlannedBucket(bucket_for(as_of, kind)) for kind in AGGREGATE_KINDS]
        logger.info(
            "Recomputing current periods for %s symbols as of %s (%s)",
            len(symbols),
            as_of,
            ", ".join(f"{p.bucket.kind.value} {p.bucket.start}" for p in plan),
        )
        return await self._run(symbols, lambda _symbol: plan)

    async def finalize_prior_period(
        self, symbols: Sequence[str], reference_date: date, kind: PeriodKind
    ) -> AggregationSummary:
        """Recompute, one last time, the bucket just before the one containing reference_date."""
        bucket = previous_bucket(bucket_for(reference_date, kind))
        logger.info(
            "Finalizing %s bucket %s..%s for %s symbols",
            kind.value,
            bucket.start,
            bucket.end,
            len(symbols),
        )
        plan = [_PlannedBucket(bucket, finalizing=True)]
        return await self._run(symbols, lambda _symbol: plan)

    async def run_daily_cycle(
        self,
        as_of: Optional[date] = None,
        symbols: Optional[Sequence[str]] = None,
        updated_on: Optional[date] = None,
    ) -> AggregationSummary:
        """
        Routine cycle: current periods every day, the prior week on Saturdays
        and the prior month on the 1st. Per instrument the current recompute
        always runs before the finalize pass.

        Without explicit symbols the universe is the instruments that got a
        daily bar on updated_on (default: as_of).
        """
        today = as_of or exchange_today()
        if symbols is None:
            symbols = await self._symbols_updated_on(updated_on or today)
        if not symbols:
            raise FatalConfigError(f"No instruments to aggregate for {updated_on or today}")

        plan = [
            _PlannedBucket(bucket, finalizing=bucket_state(bucket, today) is BucketState.FINALIZING)
            for bucket in daily_cycle_buckets(today)
        ]
        for planned in plan:
            if planned.finalizing:
                logger.info(
                    "%s finalization day: bucket %s..%s will be finalized",
                    planned.bucket.kind.value,
                    planned.bucket.start,
                    planned.bucket.end,
                )

        summary = await self._run(symbols, lambda _symbol: plan)
        logger.info("Daily timeframe cycle for %s completed: %s", today, summary.as_dict())
        return summary

    async def recompute_range(
        self, symbols: Sequence[str], from_date: date, to_date: date
    ) -> AggregationSummary:
        """Recompute every week and month bucket intersecting [from_date, to_date]."""
        if from_date > to_date:
            raise ValueError(f"from_date {from_date} is after to_date {to_date}")
        plan = [
            _PlannedBucket(bucket)
            for kind in AGGREGATE_KINDS
            for bucket in iter_buckets(kind, from_date, to_date)
        ]
        logger.info(
            "Recomputing %s buckets between %s and %s for %s symbols",
            len(plan),
            from_date,
            to_date,
            len(symbols),
        )
        return await self._run(symbols, lambda _symbol: plan)

    async def rebuild_history(
        self,
        symbols: Sequence[str],
        years_back: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> AggregationSummary:
        """Backfill/repair: recompute every bucket from Jan 1st years_back years ago up to as_of."""
        today = as_of or exchange_today()
        years = settings.HISTORY_YEARS if years_back is None else years_back
        if years < 1:
            raise ValueError("years_back must be at least 1")
        start = date(today.year - years + 1, 1, 1)
        logger.info("Rebuilding timeframes from %s to %s for %s symbols", start, today, len(symbols))
        return await self.recompute_range(symbols, start, today)

    async def _symbols_updated_on(self, day: date) -> list[str]:
        try:
            await self.throttle()
            return await self.store.list_symbols_updated_on(day)
        except Exception as exc:
            raise FatalConfigError(f"Could not load instrument universe for {day}: {exc}") from exc

    async def _run(
        self,
        symbols: Sequence[str],
        plan_for: Callable[[str], list[_PlannedBucket]],
    ) -> AggregationSummary:
        summary = AggregationSummary(symbols=len(symbols))
        gate = asyncio.Semaphore(self.max_concurrency)
        done = 0

        async def process(symbol: str) -> None:
            nonlocal done
            async with gate:
                try:
                    await self._process_symbol(symbol, plan_for(symbol), summary)
                except TransientIOError as exc:
                    logger.warning("Skipping %s for this cycle: %s", symbol, exc)
                    summary.failed_symbols.append(symbol)
                except Exception as exc:
                    logger.error("Unexpected error aggregating %s: %s", symbol, exc, exc_info=True)
                    summary.failed_symbols.append(symbol)
                done += 1
                if done % PROGRESS_EVERY == 0:
                    logger.info("Progress: %s/%s symbols processed", done, len(symbols))

        await asyncio.gather(*(process(symbol) for symbol in symbols))
        return summary

    async def _process_symbol(
        self,
        symbol: str,
        plan: list[_PlannedBucket],
        summary: AggregationSummary,
    ) -> None:
        if not plan:
            return
        from_date = min(p.bucket.start for p in plan)
        to_date = max(p.bucket.end for p in plan)
        bars = await self._fetch(symbol, from_date, to_date)

        screened = screen_bars(bars)
        for rejected in screened.rejected:
            logger.warning("Rejected daily bar %s", rejected)
        summary.rejected_rows += len(screened.rejected)

        grouped = {kind: _group_by_bucket(screened.valid, kind) for kind in {p.bucket.kind for p in plan}}
        pending: list[tuple[_PlannedBucket, PeriodBar]] = []
        for planned in plan:
            bucket = planned.bucket
            aggregate = reduce_bars(
                grouped[bucket.kind].get(bucket.start, []),
                symbol,
                bucket.kind,
                bucket.start,
            )
            if aggregate is None:
                summary.skipped_empty += 1
                continue
            pending.append((planned, aggregate))

        for i in range(0, len(pending), self.batch_size):
            batch = pending[i:i + self.batch_size]
            await self._write(symbol, [aggregate for _, aggregate in batch])
            for planned, _ in batch:
                if planned.finalizing:
                    summary.finalized += 1
                else:
                    summary.recomputed += 1

    async def _fetch(self, symbol: str, from_date: date, to_date: date) -> list[PriceBar]:
        await self.throttle()
        try:
            return list(
                await asyncio.wait_for(
                    self.source.fetch_daily_bars(symbol, from_date, to_date),
                    timeout=self.fetch_timeout,
                )
            )
        except asyncio.TimeoutError as exc:
            raise TransientIOError(
                f"fetch of {from_date}..{to_date} timed out after {self.fetch_timeout}s", symbol
            ) from exc
        except TransientIOError:
            raise
        except Exception as exc:
            raise TransientIOError(f"fetch of {from_date}..{to_date} failed: {exc}", symbol) from exc

    async def _write(self, symbol: str, aggregates: list[PeriodBar]) -> None:
        await self.throttle()
        try:
            await self.store.upsert_aggregate_bars(aggregates)
        except TransientIOError:
            raise
        except Exception as exc:
            raise TransientIOError(f"upsert of {len(aggregates)} aggregates failed: {exc}", symbol) from exc


def _group_by_bucket(bars: Iterable[PriceBar], kind: PeriodKind) -> dict[date, list[PriceBar]]:
    groups: dict[date, list[PriceBar]] = {}
    for bar in bars:
        groups.setdefault(bucket_for(bar.date, kind).start, []).append(bar)
    return groups
