from sqlalchemy import Column, String, Boolean
from kabuchart.core.database import Base
from kabuchart.models.base import TimestampMixin

class InstrumentInfo(Base, TimestampMixin):
    """
    Ticker master: listed TSE Prime common stocks keyed by 4-digit code.
    """
    __tablename__ = "instrument_info"

    symbol = Column(String(20), primary_key=True)
    name = Column(String(255))
    market = Column(String(50), default="TSE")
    sector = Column(String(100))
    currency = Column(String(10), default="JPY")
    active = Column(Boolean, default=True, nullable=False)
