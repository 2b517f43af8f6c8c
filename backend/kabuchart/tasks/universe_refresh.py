"""
Ticker master refresh task.

Syncs instrument_info with the TSE Prime listing from the market data provider.
"""
import asyncio
import logging

from kabuchart.scheduler.celery_app import app
from kabuchart.services.market_data import get_market_data_provider
from kabuchart.services.universe_service import UniverseService

logger = logging.getLogger(__name__)


async def _refresh_ticker_master_async() -> dict:
    provider = get_market_data_provider()
    try:
        listed = await provider.fetch_listed_info()
    finally:
        await provider.close()

    return await UniverseService().sync_ticker_master(listed)


@app.task(name="kabuchart.tasks.universe_refresh.refresh_ticker_master")
def refresh_ticker_master() -> dict:
    """Refresh the ticker master from the provider's listed info."""
    result = asyncio.run(_refresh_ticker_master_async())
    logger.info(f"Ticker master refresh complete: {result}")
    return {"status": "ok", **result}
