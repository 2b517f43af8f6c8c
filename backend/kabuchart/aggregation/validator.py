import math
from typing import Any, NamedTuple, Optional

# Rule codes, also used as data quality alert issue types
INVALID_PRICE = "INVALID_PRICE"
INVALID_OHLC = "INVALID_OHLC"
INVALID_VOLUME = "INVALID_VOLUME"


class Violation(NamedTuple):
    code: str
    message: str


def _is_finite_number(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except (TypeError, ValueError):
        return False


def ohlcv_violation(open_: Any, high: Any, low: Any, close: Any, volume: Any) -> Optional[Violation]:
    """
    Return the first rule an OHLCV tuple breaks, or None when it is well-formed.

    Rules: all prices present and > 0, high >= max(open, close),
    low <= min(open, close), volume present and >= 0.
    """
    prices = {"open": open_, "high": high, "low": low, "close": close}
    for field, value in prices.items():
        if not _is_finite_number(value):
            return Violation(INVALID_PRICE, f"{field} is missing or not a number: {value!r}")
        if value <= 0:
            return Violation(INVALID_PRICE, f"{field} is zero or negative: {value}")

    if high < max(open_, close):
        return Violation(INVALID_OHLC, f"high {high} below max(open, close) {max(open_, close)}")
    if low > min(open_, close):
        return Violation(INVALID_OHLC, f"low {low} above min(open, close) {min(open_, close)}")

    if not _is_finite_number(volume):
        return Violation(INVALID_VOLUME, f"volume is missing or not a number: {volume!r}")
    if volume < 0:
        return Violation(INVALID_VOLUME, f"volume is negative: {volume}")

    return None


def ohlcv_problem(open_: Any, high: Any, low: Any, close: Any, volume: Any) -> Optional[str]:
    """Message of the first broken rule, or None."""
    violation = ohlcv_violation(open_, high, low, close, volume)
    return violation.message if violation else None


def invalid_reason(bar: Any) -> Optional[str]:
    """ohlcv_problem() for any object exposing open/high/low/close/volume."""
    return ohlcv_problem(bar.open, bar.high, bar.low, bar.close, bar.volume)


def is_valid_bar(bar: Any) -> bool:
    """Pure predicate: is this bar safe to feed into an aggregate."""
    return invalid_reason(bar) is None
