"""
Exchange-local calendar bucketing.

All functions operate on civil dates in the exchange's own calendar. The
only place a wall-clock instant is turned into a date is exchange_today(),
which applies the fixed exchange offset instead of reading the host's local
zone or formatting a UTC timestamp.

Weeks start on Sunday (charting convention, not ISO weeks).
"""

from datetime import date, datetime, timedelta, timezone
from typing import Iterator, Optional

from kabuchart.aggregation.types import Bucket, PeriodKind
from kabuchart.core.config import settings

SATURDAY = 5  # date.weekday(): Monday=0 .. Sunday=6


def exchange_timezone(offset_hours: Optional[int] = None) -> timezone:
    hours = settings.EXCHANGE_UTC_OFFSET_HOURS if offset_hours is None else offset_hours
    return timezone(timedelta(hours=hours))


def to_exchange_date(moment: datetime, offset_hours: Optional[int] = None) -> date:
    """Civil date of an instant on the exchange calendar. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(exchange_timezone(offset_hours)).date()


def exchange_today(now: Optional[datetime] = None) -> date:
    return to_exchange_date(now or datetime.now(timezone.utc))


def week_start(day: date) -> date:
    # weekday index with Sunday=0
    return day - timedelta(days=(day.weekday() + 1) % 7)


def week_end(start: date) -> date:
    return start + timedelta(days=6)


def month_start(day: date) -> date:
    return day.replace(day=1)


def next_month_start(day: date) -> date:
    first = month_start(day)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def month_end(start: date) -> date:
    return next_month_start(start) - timedelta(days=1)


def bucket_for(day: date, kind: PeriodKind) -> Bucket:
    """The bucket of the given kind that contains day."""
    if kind is PeriodKind.WEEK:
        start = week_start(day)
        return Bucket(kind, start, week_end(start))
    if kind is PeriodKind.MONTH:
        start = month_start(day)
        return Bucket(kind, start, month_end(start))
    if kind is PeriodKind.DAY:
        return Bucket(kind, day, day)
    raise ValueError(f"Unsupported period kind: {kind}")


def previous_bucket(bucket: Bucket) -> Bucket:
    """Bucket immediately before the given one."""
    return bucket_for(bucket.start - timedelta(days=1), bucket.kind)


def next_bucket(bucket: Bucket) -> Bucket:
    return bucket_for(bucket.end + timedelta(days=1), bucket.kind)


def iter_buckets(kind: PeriodKind, from_date: date, to_date: date) -> Iterator[Bucket]:
    """Every bucket of kind intersecting [from_date, to_date], oldest first."""
    if from_date > to_date:
        return
    bucket = bucket_for(from_date, kind)
    while bucket.start <= to_date:
        yield bucket
        bucket = next_bucket(bucket)


def is_week_finalize_day(day: date) -> bool:
    """Saturday: the Sunday-started week before it has no trading days left."""
    return day.weekday() == SATURDAY


def is_month_finalize_day(day: date) -> bool:
    return day.day == 1


def is_finalize_day(day: date, kind: PeriodKind) -> bool:
    if kind is PeriodKind.WEEK:
        return is_week_finalize_day(day)
    if kind is PeriodKind.MONTH:
        return is_month_finalize_day(day)
    return False


def is_potential_trading_day(day: date) -> bool:
    """Weekdays only; exchange holidays are not modelled."""
    return day.weekday() < SATURDAY
