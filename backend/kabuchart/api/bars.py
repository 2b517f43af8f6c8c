from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from kabuchart.aggregation.types import PeriodKind
from kabuchart.core.database import get_db
from kabuchart.services.price_repository import PriceRepository

router = APIRouter()

MAX_LIMIT = 5000


class BarResponse(BaseModel):
    symbol: str
    timeframe: str
    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int


def get_price_repository() -> PriceRepository:
    return PriceRepository()


@router.get("/{symbol}", response_model=list[BarResponse])
async def get_bars(
    symbol: str,
    timeframe: PeriodKind = Query(default=PeriodKind.DAY),
    limit: int = Query(default=500, ge=1, le=MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
    repository: PriceRepository = Depends(get_price_repository),
):
    """Bars for one symbol, newest first. Weekly/monthly bars are keyed by period start."""
    bars = await repository.get_bars(symbol.strip().upper(), timeframe, limit=limit, session=db)
    if not bars:
        raise HTTPException(status_code=404, detail=f"No {timeframe.value} bars for {symbol}")
    return bars
