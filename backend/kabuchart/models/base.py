from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Integer, func
from sqlalchemy.orm import declarative_mixin


def _utcnow() -> datetime:
    # Stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


@declarative_mixin
class TimestampMixin:
    created_at = Column(DateTime, default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


@declarative_mixin
class IdMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
