"""TimeframeService wiring between the repository and the engine."""
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pandas as pd
import pytest

from kabuchart.aggregation.engine import AggregationSummary
from kabuchart.aggregation.types import PeriodKind
from kabuchart.core.exceptions import FatalConfigError
from kabuchart.services.market_data.base import BAR_COLUMNS
from kabuchart.services.market_data_service import ProviderBarSource
from kabuchart.services.timeframe_service import TimeframeService, open_timeframe_service


@pytest.fixture
def repository():
    repo = MagicMock()
    repo.latest_daily_date = AsyncMock(return_value=date(2025, 9, 5))
    repo.list_symbols_with_daily_data = AsyncMock(return_value=["6758", "7203"])
    repo.list_symbols_updated_on = AsyncMock(return_value=["7203"])
    return repo


@pytest.fixture
def engine():
    eng = MagicMock()
    for method in ("run_daily_cycle", "finalize_prior_period", "rebuild_history", "recompute_range"):
        setattr(eng, method, AsyncMock(return_value=AggregationSummary(symbols=1)))
    return eng


class TestTimeframeService:
    @pytest.mark.asyncio
    async def test_saturday_update_uses_latest_trading_date(self, repository, engine):
        service = TimeframeService(repository=repository, engine=engine)

        await service.update_daily(as_of=date(2025, 9, 6))

        engine.run_daily_cycle.assert_awaited_once_with(as_of=date(2025, 9, 6), updated_on=date(2025, 9, 5))

    @pytest.mark.asyncio
    async def test_future_latest_date_is_ignored(self, repository, engine):
        repository.latest_daily_date.return_value = date(2025, 9, 8)
        service = TimeframeService(repository=repository, engine=engine)

        await service.update_daily(as_of=date(2025, 9, 6))

        engine.run_daily_cycle.assert_awaited_once_with(as_of=date(2025, 9, 6), updated_on=date(2025, 9, 6))

    @pytest.mark.asyncio
    async def test_rebuild_defaults_to_every_symbol_with_data(self, repository, engine):
        service = TimeframeService(repository=repository, engine=engine)

        await service.rebuild(years_back=3)

        engine.rebuild_history.assert_awaited_once_with(["6758", "7203"], years_back=3, as_of=None)

    @pytest.mark.asyncio
    async def test_rebuild_without_any_data_is_fatal(self, repository, engine):
        repository.list_symbols_with_daily_data.return_value = []
        with pytest.raises(FatalConfigError):
            await TimeframeService(repository=repository, engine=engine).rebuild()

    @pytest.mark.asyncio
    async def test_finalize_forces_prior_period(self, repository, engine):
        service = TimeframeService(repository=repository, engine=engine)

        await service.finalize(PeriodKind.MONTH, reference_date=date(2025, 9, 15), symbols=["7203"])

        engine.finalize_prior_period.assert_awaited_once_with(["7203"], date(2025, 9, 15), PeriodKind.MONTH)

    @pytest.mark.asyncio
    async def test_create_for_range_uses_symbols_on_end_date(self, repository, engine):
        service = TimeframeService(repository=repository, engine=engine)

        await service.create_for_range(date(2025, 9, 1), date(2025, 9, 30))

        repository.list_symbols_updated_on.assert_awaited_once_with(date(2025, 9, 30))
        engine.recompute_range.assert_awaited_once_with(["7203"], date(2025, 9, 1), date(2025, 9, 30))

    @pytest.mark.asyncio
    async def test_create_for_range_without_symbols_is_fatal(self, repository, engine):
        repository.list_symbols_updated_on.return_value = []
        with pytest.raises(FatalConfigError):
            await TimeframeService(repository=repository, engine=engine).create_for_range(
                date(2025, 9, 1), date(2025, 9, 30)
            )


def feed_provider(rows):
    provider = MagicMock()
    provider.name = "fake"
    provider.fetch_symbol_bars = AsyncMock(return_value=pd.DataFrame(rows, columns=BAR_COLUMNS))
    provider.close = AsyncMock()
    return provider


class TestProviderBarSourceWiring:
    """Aggregation straight from the feed, bypassing prices_daily."""

    @pytest.mark.asyncio
    async def test_provider_source_closes_provider(self):
        provider = feed_provider([])

        with patch("kabuchart.services.timeframe_service.get_market_data_provider", return_value=provider):
            async with open_timeframe_service("provider") as service:
                assert isinstance(service.engine.source, ProviderBarSource)
                assert service.engine.source.provider is provider
                provider.close.assert_not_awaited()

        provider.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_database_source_reads_prices_daily(self):
        async with open_timeframe_service("database") as service:
            assert service.engine.source is service.repository

    @pytest.mark.asyncio
    async def test_unknown_source_is_rejected(self):
        with pytest.raises(ValueError):
            async with open_timeframe_service("csv"):
                pass

    @pytest.mark.asyncio
    async def test_feed_bars_are_aggregated_and_stored(self, repository):
        provider = feed_provider([
            ["7203", date(2025, 9, 1), 100.0, 105.0, 99.0, 103.0, 1000],
            ["7203", date(2025, 9, 2), 103.0, 110.0, 102.0, 108.0, 2000],
            ["7203", date(2025, 9, 3), 0.0, 0.0, 0.0, 0.0, 500],
        ])
        repository.upsert_aggregate_bars = AsyncMock(side_effect=lambda bars: len(bars))
        service = TimeframeService(repository=repository, source=ProviderBarSource(provider))

        summary = await service.create_for_range(date(2025, 9, 1), date(2025, 9, 3), symbols=["7203"])

        assert summary.rejected_rows == 1
        written = [bar for call in repository.upsert_aggregate_bars.await_args_list for bar in call.args[0]]
        month = next(bar for bar in written if bar.period_kind is PeriodKind.MONTH)
        assert (month.open, month.high, month.low, month.close, month.volume) == (100, 110, 99, 108, 3000)
