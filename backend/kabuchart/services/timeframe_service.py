import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Optional, Sequence

from kabuchart.aggregation.calendar import exchange_today
from kabuchart.aggregation.engine import AggregationEngine, AggregationSummary, DailyBarSource
from kabuchart.aggregation.types import PeriodKind
from kabuchart.core.exceptions import FatalConfigError
from kabuchart.services.market_data import get_market_data_provider
from kabuchart.services.market_data_service import ProviderBarSource
from kabuchart.services.price_repository import PriceRepository

logger = logging.getLogger(__name__)

BAR_SOURCES = ("database", "provider")


class TimeframeService:
    """Wire the aggregation engine to prices_daily / prices_aggregate."""

    def __init__(
        self,
        repository: Optional[PriceRepository] = None,
        source: Optional[DailyBarSource] = None,
        engine: Optional[AggregationEngine] = None,
    ):
        self.repository = repository or PriceRepository()
        self.engine = engine or AggregationEngine(
            source=source or self.repository,
            store=self.repository,
        )

    async def update_daily(
        self,
        as_of: Optional[date] = None,
        updated_on: Optional[date] = None,
    ) -> AggregationSummary:
        """
        Daily cycle. The universe is the instruments that received data on the
        latest stored trading date, so weekend runs (finalization Saturdays)
        still see Friday's instruments.
        """
        today = as_of or exchange_today()
        if updated_on is None:
            latest = await self.repository.latest_daily_date()
            updated_on = latest if latest is not None and latest <= today else today
        logger.info("Daily timeframe update: as_of=%s, instruments updated on %s", today, updated_on)
        return await self.engine.run_daily_cycle(as_of=today, updated_on=updated_on)

    async def finalize(
        self,
        kind: PeriodKind,
        reference_date: Optional[date] = None,
        symbols: Optional[Sequence[str]] = None,
    ) -> AggregationSummary:
        """Force the finalize pass for kind regardless of the calendar trigger."""
        reference = reference_date or exchange_today()
        symbols = await self._resolve_symbols(symbols)
        return await self.engine.finalize_prior_period(symbols, reference, kind)

    async def rebuild(
        self,
        years_back: Optional[int] = None,
        symbols: Optional[Sequence[str]] = None,
        as_of: Optional[date] = None,
    ) -> AggregationSummary:
        symbols = await self._resolve_symbols(symbols)
        summary = await self.engine.rebuild_history(symbols, years_back=years_back, as_of=as_of)
        logger.info("Timeframe rebuild completed: %s", summary.as_dict())
        return summary

    async def create_for_range(
        self,
        from_date: date,
        to_date: date,
        symbols: Optional[Sequence[str]] = None,
    ) -> AggregationSummary:
        """Manual mode: recompute the weeks and months touching [from_date, to_date]."""
        if symbols is None:
            symbols = await self.repository.list_symbols_updated_on(to_date)
            if not symbols:
                raise FatalConfigError(f"No instruments with daily data on {to_date}")
        summary = await self.engine.recompute_range(symbols, from_date, to_date)
        logger.info("Manual timeframe creation completed: %s", summary.as_dict())
        return summary

    async def _resolve_symbols(self, symbols: Optional[Sequence[str]]) -> Sequence[str]:
        if symbols:
            return symbols
        resolved = await self.repository.list_symbols_with_daily_data()
        if not resolved:
            raise FatalConfigError("No instruments with daily data; nothing to aggregate")
        return resolved


@asynccontextmanager
async def open_timeframe_service(
    bar_source: str = "database",
    provider_name: Optional[str] = None,
) -> AsyncIterator[TimeframeService]:
    """
    TimeframeService reading daily bars from prices_daily ("database") or
    straight from the market data feed ("provider"). The provider is closed
    on exit; aggregates are written to prices_aggregate either way.
    """
    if bar_source not in BAR_SOURCES:
        raise ValueError(f"Unknown bar source: {bar_source}")
    if bar_source == "database":
        yield TimeframeService()
        return

    provider = get_market_data_provider(provider_name)
    logger.info("Aggregating directly from %s daily bars", provider.name)
    try:
        yield TimeframeService(source=ProviderBarSource(provider))
    finally:
        await provider.close()
