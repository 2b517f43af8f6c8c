from sqlalchemy import Column, String, Date, Numeric, BigInteger, UniqueConstraint, CheckConstraint
from kabuchart.core.database import Base
from kabuchart.models.base import IdMixin, TimestampMixin

class DailyBar(Base, IdMixin, TimestampMixin):
    """
    Daily OHLCV data (exchange-local trading date).
    Source of truth that weekly/monthly aggregates are derived from.
    """
    __tablename__ = "prices_daily"
    __table_args__ = (
        UniqueConstraint("symbol", "date", name="uq_prices_daily_symbol_date"),
        CheckConstraint(
            "open > 0 AND high > 0 AND low > 0 AND close > 0",
            name="ck_prices_daily_positive",
        ),
        CheckConstraint(
            "high >= GREATEST(open, close) AND low <= LEAST(open, close) AND volume >= 0",
            name="ck_prices_daily_ohlc_consistency",
        ),
    )

    symbol = Column(String(20), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    open = Column(Numeric(14, 4), nullable=False)
    high = Column(Numeric(14, 4), nullable=False)
    low = Column(Numeric(14, 4), nullable=False)
    close = Column(Numeric(14, 4), nullable=False)
    volume = Column(BigInteger, nullable=False)
    source = Column(String(50), nullable=False, default="jquants")
    source_hash = Column(String(64))  # SHA256 for deduplication
