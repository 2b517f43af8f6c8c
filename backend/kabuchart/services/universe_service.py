import logging
from contextlib import asynccontextmanager
from typing import Any, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from kabuchart.core.config import settings
from kabuchart.core.database import AsyncSessionLocal
from kabuchart.models.instrument_info import InstrumentInfo
from kabuchart.services.market_data.jquants_provider import from_jquants_code

logger = logging.getLogger(__name__)

PRIME_MARKET_NAME = "プライム"


def filter_prime_common_stocks(listed: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Keep TSE Prime common stocks: 5-digit codes ending in 0 (86970, 167A0).
    Returns ticker master rows keyed by the 4-digit code.
    """
    rows: list[dict[str, Any]] = []
    seen = set()
    for stock in listed:
        market_code = str(stock.get("MarketCode") or "")
        market_name = str(stock.get("MarketCodeName") or "")
        if market_code != settings.PRIME_MARKET_CODE and market_name != PRIME_MARKET_NAME:
            continue
        code = str(stock.get("Code") or "").strip().upper()
        if len(code) != 5 or not code.endswith("0"):
            continue
        symbol = from_jquants_code(code)
        if symbol in seen:
            continue
        seen.add(symbol)
        rows.append(
            {
                "symbol": symbol,
                "name": stock.get("CompanyName"),
                "market": "TSE",
                "sector": stock.get("Sector17CodeName") or stock.get("Sector33CodeName"),
                "currency": "JPY",
                "active": True,
            }
        )
    return rows


class UniverseService:
    """Manage the ticker master and resolve the instrument universe."""

    def __init__(self, session: Optional[AsyncSession] = None):
        self.session = session

    async def get_active_symbols(self) -> list[str]:
        async with self._get_session() as session:
            stmt = (
                select(InstrumentInfo.symbol)
                .where(InstrumentInfo.active.is_(True))
                .order_by(InstrumentInfo.symbol.asc())
            )
            result = await session.execute(stmt)
            symbols = [row[0] for row in result.all()]
            if symbols:
                return symbols
            if settings.TRADING_UNIVERSE:
                logger.warning("Ticker master is empty; using static fallback universe")
            return self._normalize_symbols(settings.TRADING_UNIVERSE)

    async def sync_ticker_master(self, listed: Iterable[dict[str, Any]]) -> dict[str, Any]:
        """
        Upsert Prime common stocks and deactivate symbols that were delisted.
        Skips the write when the active set is unchanged.
        """
        rows = filter_prime_common_stocks(listed)
        if not rows:
            logger.warning("No Prime market stocks in listed info; ticker master left untouched")
            return {"added": 0, "deactivated": 0, "total": 0, "skipped": True}

        new_symbols = {row["symbol"] for row in rows}
        async with self._get_session() as session:
            result = await session.execute(
                select(InstrumentInfo.symbol).where(InstrumentInfo.active.is_(True))
            )
            current_symbols = {row[0] for row in result.all()}

            if current_symbols == new_symbols:
                logger.info("No change in ticker master (%s symbols); skipping update", len(new_symbols))
                return {"added": 0, "deactivated": 0, "total": len(new_symbols), "skipped": True}

            to_add = sorted(new_symbols - current_symbols)
            to_remove = sorted(current_symbols - new_symbols)
            logger.info(
                "Ticker count changed: %s -> %s (+%s, -%s)",
                len(current_symbols),
                len(new_symbols),
                len(to_add),
                len(to_remove),
            )

            stmt = insert(InstrumentInfo).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=["symbol"],
                set_={
                    "name": stmt.excluded.name,
                    "market": stmt.excluded.market,
                    "sector": stmt.excluded.sector,
                    "currency": stmt.excluded.currency,
                    "active": True,
                    "updated_at": func.now(),
                },
            )
            await session.execute(stmt)

            if to_remove:
                await session.execute(
                    update(InstrumentInfo)
                    .where(InstrumentInfo.symbol.in_(to_remove))
                    .values(active=False, updated_at=func.now())
                )
                for symbol in to_remove[:10]:
                    logger.info("  - deactivated %s", symbol)

        return {
            "added": len(to_add),
            "deactivated": len(to_remove),
            "total": len(new_symbols),
            "skipped": False,
        }

    def _normalize_symbols(self, symbols: Iterable[str]) -> list[str]:
        normalized: List[str] = []
        seen = set()
        for sym in symbols:
            if sym is None:
                continue
            symbol = sym.strip().upper()
            if not symbol or symbol in seen:
                continue
            seen.add(symbol)
            normalized.append(symbol)
        return normalized

    @asynccontextmanager
    async def _get_session(self):
        if self.session is not None:
            yield self.session
        else:
            async with AsyncSessionLocal() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
