from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kabuchart.core.database import get_db
from kabuchart.models.instrument_info import InstrumentInfo

router = APIRouter()


class InstrumentInfoResponse(BaseModel):
    symbol: str
    name: Optional[str] = None
    market: Optional[str] = None
    sector: Optional[str] = None
    currency: Optional[str] = None
    active: bool = False

    class Config:
        from_attributes = True


@router.get("", response_model=list[InstrumentInfoResponse])
async def get_instruments(
    symbols: list[str] = Query(default=[]),
    active_only: bool = Query(default=True),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(InstrumentInfo).order_by(InstrumentInfo.symbol.asc())
    if symbols:
        stmt = stmt.where(InstrumentInfo.symbol.in_(symbols))
    elif active_only:
        stmt = stmt.where(InstrumentInfo.active.is_(True))
    result = await db.execute(stmt)
    instruments = list(result.scalars().all())

    # Ensure requested symbols with no info still return at least symbol
    found = {inst.symbol for inst in instruments}
    for sym in symbols:
        if sym not in found:
            instruments.append(InstrumentInfoResponse(symbol=sym))
    return instruments
