#!/usr/bin/env python3
"""
Backfill historical daily bars for the ticker master universe.

Usage:
    python scripts/backfill_prices.py [--days 200] [--provider yfinance]
"""

import asyncio
import logging
import os
import sys
from datetime import timedelta
from argparse import ArgumentParser

# Add backend to path
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from kabuchart.aggregation.calendar import exchange_today
from kabuchart.core.exceptions import FatalConfigError
from kabuchart.core.logging import setup_logging
from kabuchart.services.market_data_service import MarketDataService
from kabuchart.services.universe_service import UniverseService

setup_logging()
logger = logging.getLogger(__name__)


async def backfill_prices(days: int = 200, provider_name: str | None = None) -> int:
    """Backfill historical price data."""
    logger.info(f"Starting backfill for {days} days of historical data")

    universe = await UniverseService().get_active_symbols()
    if not universe:
        raise FatalConfigError("Instrument universe is empty; run the ticker master refresh first")

    logger.info(f"Universe: {len(universe)} symbols")

    # Calculate date range
    end_date = exchange_today()
    start_date = end_date - timedelta(days=days)

    logger.info(f"Fetching data from {start_date} to {end_date}")

    service = MarketDataService(provider_name=provider_name)

    try:
        processed, alerts = await service.fetch_and_store_daily_bars(
            symbols=universe,
            start_date=start_date,
            end_date=end_date
        )

        logger.info(f"Successfully processed {processed} bars")

        # Report alerts
        if alerts:
            warnings = [a for a in alerts if a.severity == "WARNING"]
            errors = [a for a in alerts if a.severity == "ERROR"]

            if warnings:
                logger.warning(f"Data quality warnings: {len(warnings)}")
                for alert in warnings[:5]:  # Show first 5
                    logger.warning(f"  {alert.symbol} ({alert.date}): {alert.message}")

            if errors:
                logger.error(f"Data quality errors: {len(errors)}")
                for alert in errors[:5]:  # Show first 5
                    logger.error(f"  {alert.symbol} ({alert.date}): {alert.message}")

        return processed

    except Exception as e:
        logger.error(f"Backfill failed: {e}", exc_info=True)
        return 0
    finally:
        await service.provider.close()


def main():
    parser = ArgumentParser(description="Backfill historical daily bars")
    parser.add_argument(
        "--days",
        type=int,
        default=200,
        help="Number of days to backfill (default: 200)"
    )
    parser.add_argument(
        "--provider",
        choices=["jquants", "yfinance"],
        default=None,
        help="Market data provider (default: MARKET_DATA_PROVIDER)"
    )
    args = parser.parse_args()

    try:
        result = asyncio.run(backfill_prices(days=args.days, provider_name=args.provider))
    except FatalConfigError as e:
        logger.error(f"✗ {e}")
        sys.exit(1)

    if result > 0:
        logger.info(f"✓ Backfill completed successfully: {result} bars")
        sys.exit(0)
    else:
        logger.error("✗ Backfill failed or no data processed")
        sys.exit(1)


if __name__ == "__main__":
    main()
