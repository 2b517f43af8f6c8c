import asyncio
import yfinance as yf
from kabuchart.core.exceptions import MarketDataError
from kabuchart.services.market_data.base import BAR_COLUMNS, MarketDataProvider
from datetime import date, timedelta
import pandas as pd
import logging

logger = logging.getLogger(__name__)

TSE_SUFFIX = ".T"


class YFinanceProvider(MarketDataProvider):
    """yfinance fallback provider for TSE symbols (7203 -> 7203.T)."""

    name = "yfinance"

    async def fetch_symbol_bars(self, symbol: str, start_date: date, end_date: date) -> pd.DataFrame:
        return await asyncio.to_thread(self._download, symbol, start_date, end_date)

    def _download(self, symbol: str, start_date: date, end_date: date) -> pd.DataFrame:
        ticker = symbol if symbol.endswith(TSE_SUFFIX) else f"{symbol}{TSE_SUFFIX}"
        try:
            # yfinance treats `end` as exclusive
            # auto_adjust=False keeps the traded (unadjusted) OHLC
            data = yf.download(
                tickers=ticker,
                start=start_date.isoformat(),
                end=(end_date + timedelta(days=1)).isoformat(),
                interval="1d",
                auto_adjust=False,
                threads=False,
                progress=False,
            )
        except Exception as e:
            raise MarketDataError(f"yfinance download failed for {ticker}: {e}") from e

        if data is None or data.empty:
            return pd.DataFrame(columns=BAR_COLUMNS)

        # Recent yfinance versions return (Price, Ticker) columns even for one ticker
        if isinstance(data.columns, pd.MultiIndex):
            data = data.copy()
            data.columns = data.columns.get_level_values(0)

        result = data.reset_index()
        result.rename(
            columns={
                'Date': 'date',
                'Open': 'open',
                'High': 'high',
                'Low': 'low',
                'Close': 'close',
                'Volume': 'volume',
            },
            inplace=True,
        )
        # Daily bars are indexed by the exchange-local session date
        result['date'] = pd.to_datetime(result['date']).dt.date
        result['symbol'] = symbol.removesuffix(TSE_SUFFIX)
        return result[BAR_COLUMNS]
