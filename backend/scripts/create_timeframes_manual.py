#!/usr/bin/env python3
"""
Manually create weekly and monthly bars for a date range.

Every week and month touching [from-date, to-date] is recomputed for the
instruments that have a daily bar on to-date.

Usage:
    python scripts/create_timeframes_manual.py --from-date 2024-12-01 --to-date 2024-12-31 [--source provider]
"""

import asyncio
import logging
import os
import sys
from argparse import ArgumentParser
from datetime import date

# Add backend to path
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from kabuchart.core.exceptions import FatalConfigError
from kabuchart.core.logging import setup_logging
from kabuchart.services.timeframe_service import BAR_SOURCES, open_timeframe_service

setup_logging()
logger = logging.getLogger(__name__)


async def create_timeframes(from_date: date, to_date: date, symbols, bar_source: str):
    async with open_timeframe_service(bar_source) as service:
        return await service.create_for_range(from_date, to_date, symbols=symbols)


def main():
    parser = ArgumentParser(description="Create weekly and monthly bars for a date range")
    parser.add_argument("--from-date", type=date.fromisoformat, required=True, help="YYYY-MM-DD")
    parser.add_argument("--to-date", type=date.fromisoformat, required=True, help="YYYY-MM-DD")
    parser.add_argument("--symbols", nargs="+", default=None, help="Limit to these symbols")
    parser.add_argument(
        "--source",
        choices=BAR_SOURCES,
        default="database",
        help="Read daily bars from prices_daily or straight from the market data provider"
    )
    args = parser.parse_args()

    if args.from_date > args.to_date:
        logger.error("✗ --from-date must not be after --to-date")
        sys.exit(1)

    try:
        summary = asyncio.run(
            create_timeframes(args.from_date, args.to_date, args.symbols, args.source)
        )
    except FatalConfigError as e:
        logger.error(f"✗ {e}")
        sys.exit(1)

    logger.info(f"✓ Manual timeframe creation finished: {summary.as_dict()}")
    sys.exit(0)


if __name__ == "__main__":
    main()
