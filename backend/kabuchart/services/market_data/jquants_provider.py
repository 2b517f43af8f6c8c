import logging
from datetime import date
from typing import Any, Optional

import httpx
import pandas as pd

from kabuchart.core.config import settings
from kabuchart.core.exceptions import FatalConfigError, MarketDataError
from kabuchart.core.throttle import RateLimiter, sleep, sleep_with_backoff
from kabuchart.services.market_data.base import BAR_COLUMNS, MarketDataProvider

logger = logging.getLogger(__name__)


def to_jquants_code(symbol: str) -> str:
    """4-digit TSE code -> 5-digit J-Quants code (7203 -> 72030)."""
    symbol = symbol.strip().upper()
    return f"{symbol}0" if len(symbol) == 4 else symbol


def from_jquants_code(code: str) -> str:
    """5-digit J-Quants code -> 4-digit TSE code when it is a common stock code."""
    code = code.strip().upper()
    if len(code) == 5 and code.endswith("0"):
        return code[:4]
    return code


class JQuantsProvider(MarketDataProvider):
    """
    J-Quants API provider for TSE daily quotes.

    Authentication is two-step: mail/password -> refresh token -> ID token.
    Tokens live on the instance; nothing is shared at module level.
    """

    name = "jquants"

    def __init__(
        self,
        email: Optional[str] = None,
        password: Optional[str] = None,
        refresh_token: Optional[str] = None,
        base_url: Optional[str] = None,
        request_delay_sec: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_sec: Optional[float] = None,
        timeout_sec: Optional[float] = None,
        rate_limit_cooldown_sec: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.email = settings.JQUANTS_EMAIL if email is None else email
        self.password = settings.JQUANTS_PASSWORD if password is None else password
        self.refresh_token = (
            settings.JQUANTS_REFRESH_TOKEN if refresh_token is None else refresh_token
        ) or None
        self.base_url = (base_url or settings.JQUANTS_BASE_URL).rstrip("/")
        self.max_retries = max(
            settings.MARKET_DATA_MAX_RETRIES if max_retries is None else max_retries, 1
        )
        self.backoff_sec = (
            settings.MARKET_DATA_RETRY_BACKOFF_SEC if backoff_sec is None else backoff_sec
        )
        self.timeout_sec = settings.MARKET_DATA_TIMEOUT_SEC if timeout_sec is None else timeout_sec
        self.rate_limit_cooldown_sec = (
            settings.RATE_LIMIT_COOLDOWN_SEC
            if rate_limit_cooldown_sec is None
            else rate_limit_cooldown_sec
        )
        self._limiter = RateLimiter(
            settings.MARKET_DATA_REQUEST_DELAY_SEC if request_delay_sec is None else request_delay_sec
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._id_token: Optional[str] = None

    async def fetch_symbol_bars(self, symbol: str, start_date: date, end_date: date) -> pd.DataFrame:
        params = {
            "code": to_jquants_code(symbol),
            "from": start_date.isoformat(),
            "to": end_date.isoformat(),
        }
        quotes: list[dict[str, Any]] = []
        while True:
            data = await self._get_json("/prices/daily_quotes", params, symbol)
            quotes.extend(data.get("daily_quotes") or [])
            pagination_key = data.get("pagination_key")
            if not pagination_key:
                break
            params = {**params, "pagination_key": pagination_key}

        rows = [self._quote_to_row(symbol, quote) for quote in quotes]
        rows = [row for row in rows if row is not None]
        return pd.DataFrame(rows, columns=BAR_COLUMNS)

    async def fetch_listed_info(self) -> list[dict[str, Any]]:
        data = await self._get_json("/listed/info", {}, None)
        info = data.get("info") or []
        logger.info("Fetched %s listed instruments from J-Quants", len(info))
        return info

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_sec, transport=self._transport)
        return self._client

    async def _authenticate(self) -> None:
        client = self._get_client()
        try:
            if not self.refresh_token:
                if not self.email or not self.password:
                    raise FatalConfigError(
                        "J-Quants credentials missing: set JQUANTS_EMAIL/JQUANTS_PASSWORD "
                        "or JQUANTS_REFRESH_TOKEN"
                    )
                logger.info("Logging into J-Quants API...")
                resp = await client.post(
                    f"{self.base_url}/token/auth_user",
                    json={"mailaddress": self.email, "password": self.password},
                )
                resp.raise_for_status()
                self.refresh_token = resp.json().get("refreshToken")
                if not self.refresh_token:
                    raise MarketDataError("J-Quants login returned no refresh token")

            resp = await client.post(
                f"{self.base_url}/token/auth_refresh",
                params={"refreshtoken": self.refresh_token},
            )
            resp.raise_for_status()
            self._id_token = resp.json().get("idToken")
        except httpx.HTTPError as exc:
            raise MarketDataError(f"J-Quants authentication failed: {exc}") from exc

        if not self._id_token:
            raise MarketDataError("J-Quants token refresh returned no ID token")
        logger.info("J-Quants authentication successful")

    async def _get_json(
        self, path: str, params: dict[str, str], symbol: Optional[str]
    ) -> dict[str, Any]:
        client = self._get_client()
        reauthenticated = False
        attempt = 0
        while True:
            attempt += 1
            if self._id_token is None:
                await self._authenticate()
            await self._limiter.wait()
            try:
                resp = await client.get(
                    f"{self.base_url}{path}",
                    params=params,
                    headers={"Authorization": f"Bearer {self._id_token}"},
                )
                if resp.status_code == 401 and not reauthenticated:
                    logger.info("J-Quants ID token rejected, re-authenticating")
                    self._id_token = None
                    reauthenticated = True
                    attempt -= 1
                    continue
                if resp.status_code == 429:
                    if attempt >= self.max_retries:
                        raise MarketDataError(f"J-Quants rate limit hit for {symbol or path}")
                    logger.warning(
                        "J-Quants rate limit detected, waiting %ss", self.rate_limit_cooldown_sec
                    )
                    await sleep(self.rate_limit_cooldown_sec)
                    continue
                resp.raise_for_status()
                return resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                if attempt >= self.max_retries:
                    raise MarketDataError(
                        f"J-Quants request {path} failed for {symbol or '-'}: {exc}"
                    ) from exc
                await sleep_with_backoff(self.backoff_sec, attempt)

    def _quote_to_row(self, symbol: str, quote: dict[str, Any]) -> Optional[dict[str, Any]]:
        raw_date = quote.get("Date")
        if not raw_date:
            logger.warning("Skipping J-Quants quote without date for %s: %s", symbol, quote)
            return None
        raw_date = str(raw_date)
        if len(raw_date) == 8 and raw_date.isdigit():
            raw_date = f"{raw_date[:4]}-{raw_date[4:6]}-{raw_date[6:]}"
        try:
            bar_date = date.fromisoformat(raw_date)
        except ValueError as exc:
            logger.warning("Skipping J-Quants quote with bad date %r for %s: %s", raw_date, symbol, exc)
            return None
        return {
            "symbol": from_jquants_code(str(quote.get("Code") or symbol)),
            "date": bar_date,
            "open": _num(quote.get("Open")),
            "high": _num(quote.get("High")),
            "low": _num(quote.get("Low")),
            "close": _num(quote.get("Close")),
            "volume": _num(quote.get("Volume")),
        }


def _num(value: Any) -> float:
    # Missing values stay NaN so validation rejects the row instead of storing 0
    if value is None or value == "":
        return float("nan")
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")
