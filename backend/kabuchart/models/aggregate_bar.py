from sqlalchemy import Column, String, Date, Numeric, BigInteger, UniqueConstraint, CheckConstraint, Index
from kabuchart.core.database import Base
from kabuchart.models.base import IdMixin, TimestampMixin

class AggregateBar(Base, IdMixin, TimestampMixin):
    """
    Weekly ('1W') or monthly ('1M') OHLCV derived from prices_daily.
    Always re-derivable; persisted only for chart read performance.
    """
    __tablename__ = "prices_aggregate"
    __table_args__ = (
        UniqueConstraint(
            "symbol", "period_start", "period_kind",
            name="uq_prices_aggregate_symbol_start_kind",
        ),
        CheckConstraint("period_kind IN ('1W', '1M')", name="ck_prices_aggregate_kind"),
        CheckConstraint(
            "open > 0 AND high > 0 AND low > 0 AND close > 0",
            name="ck_prices_aggregate_positive",
        ),
        CheckConstraint(
            "high >= GREATEST(open, close) AND low <= LEAST(open, close) AND volume >= 0",
            name="ck_prices_aggregate_ohlc_consistency",
        ),
        Index("ix_prices_aggregate_kind_start", "period_kind", "period_start"),
    )

    symbol = Column(String(20), nullable=False, index=True)
    period_start = Column(Date, nullable=False)
    period_kind = Column(String(2), nullable=False)
    open = Column(Numeric(14, 4), nullable=False)
    high = Column(Numeric(14, 4), nullable=False)
    low = Column(Numeric(14, 4), nullable=False)
    close = Column(Numeric(14, 4), nullable=False)
    volume = Column(BigInteger, nullable=False)
