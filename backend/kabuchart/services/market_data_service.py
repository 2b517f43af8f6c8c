import hashlib
import logging
from dataclasses import dataclass
from datetime import date
from decimal import InvalidOperation
from typing import Any, List, Optional, Tuple

import pandas as pd

from kabuchart.aggregation.types import PriceBar
from kabuchart.aggregation.validator import ohlcv_violation
from kabuchart.core.config import settings
from kabuchart.services.market_data import get_market_data_provider
from kabuchart.services.market_data.base import MarketDataProvider
from kabuchart.services.price_repository import PriceRepository

logger = logging.getLogger(__name__)


@dataclass
class DataQualityAlert:
    """Represents a data quality issue."""
    symbol: str
    date: date
    issue_type: str
    message: str
    severity: str  # "WARNING" or "ERROR"


class DataQualityValidator:
    """
    Validates raw daily rows before they are stored:
    - No zero/negative/missing prices, no negative volume
    - OHLC consistency (high above open/close, low below them)
    - No conflicting duplicate rows for one (symbol, date)
    - Gaps > 30% from the previous close are flagged, not rejected
    """

    MAX_GAP_PERCENT = 0.30  # 30% gap threshold

    def __init__(self):
        self.alerts: List[DataQualityAlert] = []

    def validate_bar(self, row: dict[str, Any], prev_close: Optional[float] = None) -> Tuple[bool, Optional[DataQualityAlert]]:
        """
        Validate a single bar.
        Returns (is_valid, alert_if_any).
        """
        symbol = str(row.get('symbol', 'UNKNOWN'))
        bar_date = row.get('date')

        violation = ohlcv_violation(
            row.get('open'), row.get('high'), row.get('low'), row.get('close'), row.get('volume')
        )
        if violation is not None:
            alert = DataQualityAlert(
                symbol=symbol,
                date=bar_date,
                issue_type=violation.code,
                message=violation.message,
                severity="ERROR"
            )
            self.alerts.append(alert)
            return False, alert

        # Check for >30% gap from previous close
        if prev_close is not None and prev_close > 0:
            current_open = float(row['open'])
            gap_pct = abs(current_open - prev_close) / prev_close

            if gap_pct > self.MAX_GAP_PERCENT:
                alert = DataQualityAlert(
                    symbol=symbol,
                    date=bar_date,
                    issue_type="LARGE_GAP",
                    message=f"Gap of {gap_pct:.1%} from prev close {prev_close} to open {current_open}",
                    severity="WARNING"
                )
                self.alerts.append(alert)
                # Don't reject, but flag for review
                logger.warning(f"Large gap detected: {alert.message}")

        return True, None

    def drop_conflicting_duplicates(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Collapse identical (symbol, date) rows; drop every row of a
        (symbol, date) whose duplicates disagree.
        """
        df = df.drop_duplicates()
        conflicted = df.duplicated(subset=['symbol', 'date'], keep=False)
        if conflicted.any():
            for (symbol, bar_date), group in df[conflicted].groupby(['symbol', 'date']):
                self.alerts.append(DataQualityAlert(
                    symbol=str(symbol),
                    date=bar_date,
                    issue_type="DUPLICATE_DATE",
                    message=f"{len(group)} conflicting rows for the same date",
                    severity="ERROR"
                ))
        return df[~conflicted]

    def get_alerts(self) -> List[DataQualityAlert]:
        """Return all accumulated alerts."""
        return self.alerts

    def clear_alerts(self) -> None:
        """Clear accumulated alerts."""
        self.alerts = []


class MarketDataService:
    """
    Service to orchestrate fetching, validating, and storing daily bars.
    """

    def __init__(
        self,
        provider_name: Optional[str] = None,
        provider: Optional[MarketDataProvider] = None,
        repository: Optional[PriceRepository] = None,
    ):
        self.provider = provider or get_market_data_provider(provider_name)
        self.provider_name = self.provider.name
        self.repository = repository or PriceRepository()
        self.validator = DataQualityValidator()

    def clamp_to_history_start(self, start_date: date) -> date:
        """J-Quants has no quotes before JQUANTS_HISTORY_START; never ask for them."""
        if self.provider_name != "jquants":
            return start_date
        history_start = date.fromisoformat(settings.JQUANTS_HISTORY_START)
        if start_date < history_start:
            logger.info(f"Clamping start date {start_date} to J-Quants history start {history_start}")
            return history_start
        return start_date

    async def fetch_and_store_daily_bars(
        self,
        symbols: List[str],
        start_date: date,
        end_date: date
    ) -> Tuple[int, List[DataQualityAlert]]:
        """
        Fetch data from provider, validate, and upsert into database.
        Returns (number of records processed, list of data quality alerts).
        """
        self.validator.clear_alerts()
        start_date = self.clamp_to_history_start(start_date)
        if start_date > end_date:
            logger.warning(f"{self.provider_name} has no history before {start_date}; nothing to fetch")
            return 0, []
        logger.info(f"Fetching data for {len(symbols)} symbols from {start_date} to {end_date}")

        # 1. Fetch
        df = await self.provider.fetch_daily_bars(symbols, start_date, end_date)
        if df.empty:
            logger.warning("No data returned from provider")
            return 0, []

        # 2. Transform & Validate with quality checks
        records = self.validate_frame(df)

        if not records:
            return 0, self.validator.get_alerts()

        # 3. Store (Upsert) in batches
        try:
            total_inserted = await self.repository.upsert_daily_bars(records)
        except Exception as e:
            logger.error(f"Failed to store market data: {e}")
            return 0, self.validator.get_alerts()

        logger.info(f"Successfully upserted {total_inserted} daily bars")

        # Log any data quality alerts
        alerts = self.validator.get_alerts()
        if alerts:
            logger.warning(f"Data quality alerts: {len(alerts)} issues detected")
            for alert in alerts:
                logger.warning(f"  [{alert.severity}] {alert.symbol}: {alert.issue_type} - {alert.message}")

        return total_inserted, alerts

    def validate_frame(self, df: pd.DataFrame) -> List[dict]:
        """Validate provider rows and return the storable records."""
        records = []
        prev_closes: dict[str, float] = {}

        df = self.validator.drop_conflicting_duplicates(df)
        # Sort by symbol and date for gap detection
        df_sorted = df.sort_values(['symbol', 'date'])

        for row in df_sorted.to_dict('records'):
            symbol = str(row['symbol'])

            # Get previous close for gap detection
            prev_close = prev_closes.get(symbol)

            # Validate the bar
            is_valid, alert = self.validator.validate_bar(row, prev_close)

            if is_valid:
                record = self._prepare_record(row)
                if record:
                    records.append(record)
                    # Update prev_close for next iteration
                    prev_closes[symbol] = float(row['close'])
            else:
                logger.warning(f"Rejected invalid bar: {symbol} {row.get('date')}: {alert.message if alert else 'unknown'}")

        return records

    def _prepare_record(self, row: dict[str, Any]) -> Optional[dict]:
        """Convert a validated row to a dictionary for DB insert."""
        try:
            bar = PriceBar.from_mapping(row)
            # Create content hash for audit
            # We strictly cast to string to ensure consistent hashing
            raw_content = f"{bar.symbol}|{bar.date}|{bar.open}|{bar.high}|{bar.low}|{bar.close}|{bar.volume}"
            content_hash = hashlib.sha256(raw_content.encode()).hexdigest()

            return {
                "symbol": bar.symbol,
                "date": bar.date,
                "open": bar.open,
                "high": bar.high,
                "low": bar.low,
                "close": bar.close,
                "volume": bar.volume,
                "source": self.provider_name,
                "source_hash": content_hash
            }
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            logger.warning(f"Skipping invalid row: {row}: {e}")
            return None


class ProviderBarSource:
    """
    Feed daily bars straight from a market data provider into the
    aggregation engine, bypassing prices_daily.

    Rows are passed through unvalidated so the engine can count and log
    rejects; only rows that cannot be represented at all are dropped here.
    """

    def __init__(self, provider: MarketDataProvider):
        self.provider = provider

    async def fetch_daily_bars(self, symbol: str, from_date: date, to_date: date) -> list[PriceBar]:
        df = await self.provider.fetch_symbol_bars(symbol, from_date, to_date)
        bars = []
        for row in df.to_dict('records'):
            try:
                bars.append(PriceBar.from_mapping(row))
            except (KeyError, TypeError, ValueError, InvalidOperation) as e:
                logger.warning(f"Dropping unreadable row for {symbol}: {row}: {e}")
        return bars
