"""
Value types shared by the aggregation pipeline.

These are plain immutable records; the ORM models in kabuchart.models are
the persisted counterparts.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping


class PeriodKind(str, Enum):
    """Timeframe codes as stored in the database and served to charts."""

    DAY = "1D"
    WEEK = "1W"
    MONTH = "1M"


def to_decimal(value: Any) -> Decimal:
    """Convert feed numbers to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # float() unwraps numpy scalars so repr() stays a plain literal
        return Decimal(repr(float(value)))
    return Decimal(str(value))


@dataclass(frozen=True)
class PriceBar:
    """One trading day's OHLCV for one instrument (exchange-local date)."""

    symbol: str
    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "PriceBar":
        bar_date = row["date"]
        if isinstance(bar_date, datetime):
            # pandas Timestamp is a datetime subclass
            bar_date = bar_date.date()
        elif isinstance(bar_date, str):
            bar_date = date.fromisoformat(bar_date[:10])
        return cls(
            symbol=str(row["symbol"]),
            date=bar_date,
            open=to_decimal(row["open"]),
            high=to_decimal(row["high"]),
            low=to_decimal(row["low"]),
            close=to_decimal(row["close"]),
            volume=int(row["volume"]),
        )


@dataclass(frozen=True)
class PeriodBar:
    """Weekly or monthly aggregate derived from daily bars."""

    symbol: str
    period_start: date
    period_kind: PeriodKind
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int

    def to_record(self) -> dict[str, Any]:
        """Row dict for the aggregate upsert."""
        return {
            "symbol": self.symbol,
            "period_start": self.period_start,
            "period_kind": self.period_kind.value,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class Bucket:
    """Calendar period that groups daily bars; start and end are inclusive."""

    kind: PeriodKind
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def is_open(self, today: date) -> bool:
        """True while the period has not fully elapsed."""
        return self.end >= today
