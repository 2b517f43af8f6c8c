import logging
from datetime import date
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kabuchart.aggregation.types import PeriodBar, PeriodKind, PriceBar
from kabuchart.core.config import settings
from kabuchart.core.database import AsyncSessionLocal
from kabuchart.models.aggregate_bar import AggregateBar
from kabuchart.models.daily_bar import DailyBar

logger = logging.getLogger(__name__)


class PriceRepository:
    """
    Storage gateway for daily and aggregated bars.

    Writes are idempotent upserts on the natural keys
    (symbol, date) and (symbol, period_start, period_kind).
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        batch_size: Optional[int] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.batch_size = batch_size or settings.UPSERT_BATCH_SIZE

    async def fetch_daily_bars(self, symbol: str, from_date: date, to_date: date) -> list[PriceBar]:
        """DailyBarSource implementation backed by prices_daily."""
        return await self.query_daily_bars(symbol, from_date, to_date)

    async def query_daily_bars(self, symbol: str, from_date: date, to_date: date) -> list[PriceBar]:
        async with self.session_factory() as session:
            stmt = (
                select(DailyBar)
                .where(
                    DailyBar.symbol == symbol,
                    DailyBar.date >= from_date,
                    DailyBar.date <= to_date,
                )
                .order_by(DailyBar.date.asc())
            )
            result = await session.execute(stmt)
            return [
                PriceBar(
                    symbol=row.symbol,
                    date=row.date,
                    open=row.open,
                    high=row.high,
                    low=row.low,
                    close=row.close,
                    volume=int(row.volume),
                )
                for row in result.scalars().all()
            ]

    async def upsert_daily_bars(self, records: Sequence[dict[str, Any]]) -> int:
        if not records:
            return 0

        total = 0
        async with self.session_factory() as session:
            try:
                for i in range(0, len(records), self.batch_size):
                    batch = list(records[i:i + self.batch_size])
                    stmt = insert(DailyBar).values(batch)
                    stmt = stmt.on_conflict_do_update(
                        constraint="uq_prices_daily_symbol_date",
                        set_={
                            "open": stmt.excluded.open,
                            "high": stmt.excluded.high,
                            "low": stmt.excluded.low,
                            "close": stmt.excluded.close,
                            "volume": stmt.excluded.volume,
                            "source": stmt.excluded.source,
                            "source_hash": stmt.excluded.source_hash,
                            "updated_at": func.now(),
                        },
                    )
                    await session.execute(stmt)
                    total += len(batch)
                    logger.info(
                        "Upserted daily batch %s: %s bars (total: %s/%s)",
                        i // self.batch_size + 1,
                        len(batch),
                        total,
                        len(records),
                    )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return total

    async def upsert_aggregate_bars(self, bars: Sequence[PeriodBar]) -> int:
        if not bars:
            return 0

        records = [bar.to_record() for bar in bars]
        total = 0
        async with self.session_factory() as session:
            try:
                for i in range(0, len(records), self.batch_size):
                    batch = records[i:i + self.batch_size]
                    stmt = insert(AggregateBar).values(batch)
                    stmt = stmt.on_conflict_do_update(
                        constraint="uq_prices_aggregate_symbol_start_kind",
                        set_={
                            "open": stmt.excluded.open,
                            "high": stmt.excluded.high,
                            "low": stmt.excluded.low,
                            "close": stmt.excluded.close,
                            "volume": stmt.excluded.volume,
                            "updated_at": func.now(),
                        },
                    )
                    await session.execute(stmt)
                    total += len(batch)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return total

    async def list_symbols_updated_on(self, day: date) -> list[str]:
        """Symbols that received a daily bar for the given trading date."""
        async with self.session_factory() as session:
            stmt = (
                select(DailyBar.symbol)
                .where(DailyBar.date == day)
                .distinct()
                .order_by(DailyBar.symbol.asc())
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_symbols_with_daily_data(self) -> list[str]:
        async with self.session_factory() as session:
            stmt = select(DailyBar.symbol).distinct().order_by(DailyBar.symbol.asc())
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def latest_daily_date(self) -> Optional[date]:
        async with self.session_factory() as session:
            result = await session.execute(select(func.max(DailyBar.date)))
            return result.scalar_one_or_none()

    async def get_bars(
        self,
        symbol: str,
        kind: PeriodKind,
        limit: Optional[int] = None,
        session: Optional[AsyncSession] = None,
    ) -> list[dict[str, Any]]:
        """Chart read side: newest bars first, same shape for every timeframe."""
        if kind is PeriodKind.DAY:
            stmt = (
                select(DailyBar.date, DailyBar.open, DailyBar.high, DailyBar.low, DailyBar.close, DailyBar.volume)
                .where(DailyBar.symbol == symbol)
                .order_by(DailyBar.date.desc())
            )
        else:
            stmt = (
                select(
                    AggregateBar.period_start,
                    AggregateBar.open,
                    AggregateBar.high,
                    AggregateBar.low,
                    AggregateBar.close,
                    AggregateBar.volume,
                )
                .where(AggregateBar.symbol == symbol, AggregateBar.period_kind == kind.value)
                .order_by(AggregateBar.period_start.desc())
            )
        if limit:
            stmt = stmt.limit(limit)

        if session is not None:
            rows = (await session.execute(stmt)).all()
        else:
            async with self.session_factory() as own_session:
                rows = (await own_session.execute(stmt)).all()

        return [
            {
                "symbol": symbol,
                "timeframe": kind.value,
                "date": row[0],
                "open": row[1],
                "high": row[2],
                "low": row[3],
                "close": row[4],
                "volume": int(row[5]),
            }
            for row in rows
        ]
