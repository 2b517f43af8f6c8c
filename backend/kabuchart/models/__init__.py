# Base
from kabuchart.models.base import TimestampMixin, IdMixin

# Market Data
from kabuchart.models.daily_bar import DailyBar
from kabuchart.models.aggregate_bar import AggregateBar
from kabuchart.models.instrument_info import InstrumentInfo

__all__ = [
    "TimestampMixin",
    "IdMixin",
    "DailyBar",
    "AggregateBar",
    "InstrumentInfo",
]
