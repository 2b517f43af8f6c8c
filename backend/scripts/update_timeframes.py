#!/usr/bin/env python3
"""
Run the daily weekly/monthly timeframe cycle once.

Recomputes the current week and month for every instrument that received
a daily bar on the latest trading date; finalizes the prior week on
Saturdays and the prior month on the 1st.

Usage:
    python scripts/update_timeframes.py [--target-date 2025-01-04]
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
from kabuchart.services.timeframe_service import TimeframeService

setup_logging()
logger = logging.getLogger(__name__)


def main():
    parser = ArgumentParser(description="Update weekly and monthly bars")
    parser.add_argument(
        "--target-date",
        type=date.fromisoformat,
        default=None,
        help="Run as if today were this date (YYYY-MM-DD, default: today in JST)"
    )
    args = parser.parse_args()

    try:
        summary = asyncio.run(TimeframeService().update_daily(as_of=args.target_date))
    except FatalConfigError as e:
        logger.error(f"✗ {e}")
        sys.exit(1)

    logger.info(f"✓ Timeframe update finished: {summary.as_dict()}")
    if summary.failed_symbols:
        logger.warning(f"Failed symbols: {', '.join(summary.failed_symbols[:20])}")
    sys.exit(0)


if __name__ == "__main__":
    main()
