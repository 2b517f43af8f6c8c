"""
Error taxonomy for ingestion and aggregation.

Only FatalConfigError is allowed to abort a batch; everything else is
scoped to a single instrument or row.
"""

from datetime import date
from typing import Optional


class KabuchartError(Exception):
    """Base class for application errors."""


class InputDataError(KabuchartError):
    """A source row was rejected before aggregation."""

    def __init__(self, symbol: str, bar_date: Optional[date], reason: str):
        self.symbol = symbol
        self.bar_date = bar_date
        self.reason = reason
        super().__init__(f"{symbol} {bar_date}: {reason}")


class TransientIOError(KabuchartError):
    """Fetch or write against an external collaborator failed or timed out."""

    def __init__(self, message: str, symbol: Optional[str] = None):
        self.symbol = symbol
        super().__init__(message)


class MarketDataError(TransientIOError):
    """Market data provider request failed (HTTP, auth, payload)."""


class FatalConfigError(KabuchartError):
    """Required configuration is missing; the whole run must stop."""
