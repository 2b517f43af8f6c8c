from kabuchart.aggregation.engine import AggregationEngine, AggregationSummary
from kabuchart.aggregation.reducer import reduce_bars, screen_bars
from kabuchart.aggregation.types import Bucket, PeriodBar, PeriodKind, PriceBar
from kabuchart.aggregation.validator import is_valid_bar

__all__ = [
    "AggregationEngine",
    "AggregationSummary",
    "Bucket",
    "PeriodBar",
    "PeriodKind",
    "PriceBar",
    "is_valid_bar",
    "reduce_bars",
    "screen_bars",
]
