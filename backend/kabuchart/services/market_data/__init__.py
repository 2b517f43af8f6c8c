from typing import Dict, Type
from kabuchart.services.market_data.base import MarketDataProvider
from kabuchart.services.market_data.jquants_provider import JQuantsProvider
from kabuchart.services.market_data.yfinance_provider import YFinanceProvider
from kabuchart.core.config import settings

PROVIDERS: Dict[str, Type[MarketDataProvider]] = {
    "jquants": JQuantsProvider,
    "yfinance": YFinanceProvider,
}

def get_market_data_provider(name: str | None = None) -> MarketDataProvider:
    """Factory to get provider instance."""
    provider_class = PROVIDERS.get(name or settings.MARKET_DATA_PROVIDER)
    if not provider_class:
        # Fallback based on config or default
        if settings.USE_YFINANCE_FALLBACK:
            return YFinanceProvider()
        raise ValueError(f"Unknown provider: {name}")

    return provider_class()
