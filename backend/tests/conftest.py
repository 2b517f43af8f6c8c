"""Pytest configuration and shared fixtures."""
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional

import pytest

# Add backend to path for imports
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

from kabuchart.aggregation.types import PeriodBar, PeriodKind, PriceBar  # noqa: E402


def make_bar(
    day: date,
    open_="100",
    high="110",
    low="95",
    close="105",
    volume=1000,
    symbol: str = "7203",
) -> PriceBar:
    return PriceBar(
        symbol=symbol,
        date=day,
        open=Decimal(str(open_)),
        high=Decimal(str(high)),
        low=Decimal(str(low)),
        close=Decimal(str(close)),
        volume=volume,
    )


class FakeBarSource:
    """In-memory DailyBarSource; per-symbol failures can be injected."""

    def __init__(self, bars: Optional[list[PriceBar]] = None):
        self.bars = list(bars or [])
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, date, date]] = []

    async def fetch_daily_bars(self, symbol: str, from_date: date, to_date: date) -> list[PriceBar]:
        self.calls.append((symbol, from_date, to_date))
        if symbol in self.failures:
            raise self.failures[symbol]
        return [
            bar for bar in self.bars
            if bar.symbol == symbol and from_date <= bar.date <= to_date
        ]


class FakeAggregateStore:
    """In-memory AggregateBarStore keyed like the prices_aggregate unique constraint."""

    def __init__(self, updated: Optional[dict[date, list[str]]] = None):
        self.rows: dict[tuple[str, date, PeriodKind], PeriodBar] = {}
        self.updated = updated or {}
        self.write_calls = 0

    async def upsert_aggregate_bars(self, bars) -> int:
        self.write_calls += 1
        for bar in bars:
            self.rows[(bar.symbol, bar.period_start, bar.period_kind)] = bar
        return len(bars)

    async def list_symbols_updated_on(self, day: date) -> list[str]:
        return list(self.updated.get(day, []))

    def get(self, symbol: str, period_start: date, kind: PeriodKind) -> Optional[PeriodBar]:
        return self.rows.get((symbol, period_start, kind))


@pytest.fixture
def bar() -> Callable[..., PriceBar]:
    return make_bar


@pytest.fixture
def source() -> FakeBarSource:
    return FakeBarSource()


@pytest.fixture
def store() -> FakeAggregateStore:
    return FakeAggregateStore()
