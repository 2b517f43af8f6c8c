from kabuchart.scheduler.celery_app import app
from kabuchart.aggregation.calendar import exchange_today, is_potential_trading_day
from kabuchart.core.exceptions import FatalConfigError
from kabuchart.services.market_data_service import DataQualityAlert, MarketDataService
from kabuchart.core.redis import get_redis, StreamNames
from kabuchart.services.universe_service import UniverseService
from datetime import date, timedelta
import logging
import asyncio

logger = logging.getLogger(__name__)

# Re-fetch a few days to pick up late corrections from the feed
INGEST_LOOKBACK_DAYS = 3


@app.task(name="kabuchart.tasks.market_data.ingest_daily_bars")
def ingest_daily_bars():
    """
    Scheduled task to ingest daily bars for the ticker master universe.
    Runs after the TSE close on weekdays.
    """
    today = exchange_today()
    if not is_potential_trading_day(today):
        logger.info(f"{today} is a weekend; no daily bars to ingest")
        return {"status": "skipped", "processed": 0, "date": str(today)}

    processed, universe, alerts = asyncio.run(_ingest_daily_bars_async(today))

    # Log results
    if processed > 0:
        logger.info(f"Ingested {processed} daily bars for {len(universe)} symbols")

        # Publish to market-bars stream for downstream consumers
        try:
            r = get_redis()
            r.xadd(StreamNames.MARKET_BARS, {
                "event_type": "batch_complete",
                "date": str(today),
                "symbols": str(len(universe)),
                "count": str(processed)
            })
        except Exception as e:
            logger.error(f"Failed to publish stream event: {e}")

    # Handle data quality alerts
    alert_count = len(alerts)
    error_alerts = [a for a in alerts if a.severity == "ERROR"]

    if error_alerts:
        logger.error(f"Data quality ERRORS detected: {len(error_alerts)}")
        # Publish alerts to Redis for monitor consumer
        try:
            r = get_redis()
            r.xadd(StreamNames.ALERTS, {
                "level": "ERROR",
                "title": "Data Quality Issues",
                "message": f"{len(error_alerts)} data quality errors during ingestion"
            })
        except Exception as e:
            logger.error(f"Failed to publish alert: {e}")

    return {
        "status": "completed",
        "processed": processed,
        "date": str(today),
        "alerts": alert_count,
        "errors": len(error_alerts)
    }


async def _ingest_daily_bars_async(today: date) -> tuple[int, list[str], list[DataQualityAlert]]:
    universe = await UniverseService().get_active_symbols()
    if not universe:
        raise FatalConfigError("Instrument universe is empty; run the ticker master refresh first")

    service = MarketDataService()
    try:
        processed, alerts = await service.fetch_and_store_daily_bars(
            universe, today - timedelta(days=INGEST_LOOKBACK_DAYS), today
        )
    finally:
        await service.provider.close()
    return processed, universe, alerts
