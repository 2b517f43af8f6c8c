#!/usr/bin/env python3
"""
Rebuild weekly and monthly bars from stored daily history.

Usage:
    python scripts/rebuild_timeframes.py [--years 5] [--symbols 7203 6758] [--source provider]
"""

import asyncio
import logging
import os
import sys
from argparse import ArgumentParser

# Add backend to path
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from kabuchart.core.config import settings
from kabuchart.core.exceptions import FatalConfigError
from kabuchart.core.logging import setup_logging
from kabuchart.services.timeframe_service import BAR_SOURCES, open_timeframe_service

setup_logging()
logger = logging.getLogger(__name__)


async def rebuild(years: int, symbols, bar_source: str):
    async with open_timeframe_service(bar_source) as service:
        return await service.rebuild(years_back=years, symbols=symbols)


def main():
    parser = ArgumentParser(description="Rebuild weekly and monthly history")
    parser.add_argument(
        "--years",
        type=int,
        default=settings.HISTORY_YEARS,
        help=f"Calendar years to rebuild, current year included (default: {settings.HISTORY_YEARS})"
    )
    parser.add_argument(
        "--symbols",
        nargs="+",
        default=None,
        help="Limit the rebuild to these symbols (default: all with daily data)"
    )
    parser.add_argument(
        "--source",
        choices=BAR_SOURCES,
        default="database",
        help="Read daily bars from prices_daily or straight from the market data provider"
    )
    args = parser.parse_args()

    try:
        summary = asyncio.run(rebuild(args.years, args.symbols, args.source))
    except (FatalConfigError, ValueError) as e:
        logger.error(f"✗ {e}")
        sys.exit(1)

    logger.info(f"✓ Rebuild finished: {summary.as_dict()}")
    if summary.failed_symbols:
        logger.warning(f"Failed symbols: {', '.join(summary.failed_symbols[:20])}")
    sys.exit(0)


if __name__ == "__main__":
    main()
