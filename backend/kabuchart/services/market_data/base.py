import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, List

import pandas as pd

from kabuchart.core.exceptions import MarketDataError

logger = logging.getLogger(__name__)

BAR_COLUMNS = ["symbol", "date", "open", "high", "low", "close", "volume"]


class MarketDataProvider(ABC):
    """Abstract base class for market data providers."""

    name: str = "unknown"

    @abstractmethod
    async def fetch_symbol_bars(self, symbol: str, start_date: date, end_date: date) -> pd.DataFrame:
        """
        Fetch daily OHLCV bars for one symbol, both dates inclusive.
        Returns DataFrame with columns: [symbol, date, open, high, low, close, volume].
        Rows are returned as delivered; malformed rows are left for validation.
        Raises MarketDataError when the request fails.
        """
        pass

    async def fetch_daily_bars(
        self,
        symbols: List[str],
        start_date: date,
        end_date: date,
    ) -> pd.DataFrame:
        """Fetch several symbols; a failing symbol is logged and skipped."""
        frames = []
        for i, symbol in enumerate(symbols):
            if i == 0 or (i + 1) % 100 == 0:
                logger.info("[%s/%s] Fetching %s", i + 1, len(symbols), symbol)
            try:
                df = await self.fetch_symbol_bars(symbol, start_date, end_date)
            except MarketDataError as exc:
                logger.warning("Failed to fetch daily bars for %s: %s", symbol, exc)
                continue
            if not df.empty:
                frames.append(df)

        if not frames:
            return pd.DataFrame(columns=BAR_COLUMNS)
        return pd.concat(frames, ignore_index=True)

    async def fetch_listed_info(self) -> list[dict[str, Any]]:
        """Listed instruments as delivered by the provider (empty if unsupported)."""
        return []

    async def close(self) -> None:
        """Release network resources."""
        return None
