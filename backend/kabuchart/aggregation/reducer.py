"""
OHLC reduction of daily bars into one period bar.

The reducer is pure: it never logs and never touches storage. Callers that
want to report rejected rows use screen_bars() first and log its output.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from kabuchart.aggregation.types import PeriodBar, PeriodKind, PriceBar
from kabuchart.aggregation.validator import invalid_reason, ohlcv_problem
from kabuchart.core.exceptions import InputDataError


@dataclass
class ScreenedBars:
    """Valid bars sorted by date plus the rows that were dropped."""

    valid: list[PriceBar] = field(default_factory=list)
    rejected: list[InputDataError] = field(default_factory=list)


def screen_bars(bars: Iterable[PriceBar]) -> ScreenedBars:
    """
    Drop malformed rows and resolve duplicate dates.

    Identical rows sharing a date collapse into one. Rows sharing a date
    but disagreeing on any value are all rejected, so the outcome does not
    depend on the order the feed delivered them in.
    """
    result = ScreenedBars()
    by_date: dict[date, list[PriceBar]] = {}

    for bar in bars:
        reason = invalid_reason(bar)
        if reason is not None:
            result.rejected.append(InputDataError(bar.symbol, bar.date, reason))
            continue
        by_date.setdefault(bar.date, []).append(bar)

    for bar_date in sorted(by_date):
        candidates = by_date[bar_date]
        first = candidates[0]
        if all(candidate == first for candidate in candidates[1:]):
            result.valid.append(first)
            continue
        for candidate in candidates:
            result.rejected.append(
                InputDataError(
                    candidate.symbol,
                    bar_date,
                    f"conflicting duplicate rows for date ({len(candidates)} rows)",
                )
            )

    return result


def reduce_bars(
    bars: Iterable[PriceBar],
    symbol: str,
    period_kind: PeriodKind,
    period_start: date,
) -> Optional[PeriodBar]:
    """
    Aggregate the bars of one bucket.

    Returns None when no valid bar remains, so that callers never overwrite
    a stored aggregate with an empty or zeroed one.
    """
    valid = screen_bars(bars).valid
    if not valid:
        return None

    first, last = valid[0], valid[-1]
    aggregate = PeriodBar(
        symbol=symbol,
        period_start=period_start,
        period_kind=period_kind,
        open=first.open,
        high=max(bar.high for bar in valid),
        low=min(bar.low for bar in valid),
        close=last.close,
        volume=sum(bar.volume for bar in valid),
    )

    if ohlcv_problem(aggregate.open, aggregate.high, aggregate.low, aggregate.close, aggregate.volume):
        return None
    return aggregate
