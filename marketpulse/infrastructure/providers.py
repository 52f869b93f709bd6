"""Upstream market data providers."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import asyncio
import logging
import math

import httpx
import yfinance as yf

from marketpulse.config import MarketDataConfig, market_data_config
from marketpulse.domain.entities import INDEX_ALIASES, MarketQuote
from marketpulse.domain.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

# Index aliases map to fixed Yahoo identifiers.
YAHOO_INDEX_SYMBOLS = {
    "NIFTY": "^NSEI",
    "SENSEX": "^BSESN",
    "BANKNIFTY": "^NSEBANK",
}


def normalize_symbol(symbol: str, exchange_suffix: str = ".NS") -> str:
    """Map a client symbol to the Yahoo Finance identifier."""
    symbol = symbol.strip().upper()
    if symbol in YAHOO_INDEX_SYMBOLS:
        return YAHOO_INDEX_SYMBOLS[symbol]
    if "." in symbol:
        return symbol
    return f"{symbol}{exchange_suffix}"


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


class QuoteProvider(ABC):
    """Interface for a single upstream quote source."""

    name: str = "provider"

    def supports(self, symbol: str) -> bool:
        """Whether this provider serves the symbol's class."""
        return True

    @abstractmethod
    async def fetch_quote(self, symbol: str) -> MarketQuote:
        """Fetch a fresh quote; raises UpstreamUnavailable on any failure."""
        pass

    async def close(self) -> None:
        """Release network resources."""


class YahooFinanceProvider(QuoteProvider):
    """Primary provider backed by yfinance (runs in a worker thread)."""

    name = "yahoo_finance"

    def __init__(self, exchange_suffix: str = ".NS"):
        self._suffix = exchange_suffix

    def _read_field(self, info: Any, key: str) -> Optional[float]:
        # Some fast_info fields are computed lazily and fail for indices.
        try:
            return _as_float(info[key])
        except Exception as e:
            logger.debug(f"fast_info field {key} unavailable: {e}")
            return None

    def _fetch_snapshot_sync(self, provider_symbol: str) -> Dict[str, Optional[float]]:
        """Read the raw snapshot from yfinance (blocking)."""
        info = yf.Ticker(provider_symbol).fast_info
        return {
            "price": self._read_field(info, "lastPrice"),
            "previous_close": self._read_field(info, "previousClose"),
            "volume": self._read_field(info, "lastVolume"),
            "day_high": self._read_field(info, "dayHigh"),
            "day_low": self._read_field(info, "dayLow"),
            "market_cap": self._read_field(info, "marketCap"),
        }

    async def fetch_quote(self, symbol: str) -> MarketQuote:
        provider_symbol = normalize_symbol(symbol, self._suffix)
        try:
            snapshot = await asyncio.to_thread(self._fetch_snapshot_sync, provider_symbol)
        except Exception as e:
            raise UpstreamUnavailable(self.name, symbol, str(e)) from e

        if snapshot.get("price") is None:
            raise UpstreamUnavailable(self.name, symbol, "no price data")

        return MarketQuote.from_snapshot(
            symbol=symbol,
            price=snapshot["price"],
            previous_close=snapshot.get("previous_close"),
            volume=int(snapshot.get("volume") or 0),
            day_high=snapshot.get("day_high"),
            day_low=snapshot.get("day_low"),
            market_cap=snapshot.get("market_cap"),
            source=self.name,
        )


class AlphaVantageProvider(QuoteProvider):
    """Fallback provider using Alpha Vantage GLOBAL_QUOTE (equities only)."""

    name = "alpha_vantage"
    BASE_URL = "https://www.alphavantage.co/query"

    def __init__(
        self,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def supports(self, symbol: str) -> bool:
        return bool(self._api_key) and symbol.upper() not in INDEX_ALIASES

    async def fetch_quote(self, symbol: str) -> MarketQuote:
        try:
            response = await self._client.get(
                self.BASE_URL,
                params={"function": "GLOBAL_QUOTE", "symbol": symbol, "apikey": self._api_key},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamUnavailable(self.name, symbol, str(e)) from e

        quote = payload.get("Global Quote") if isinstance(payload, dict) else None
        if not quote:
            raise UpstreamUnavailable(self.name, symbol, "empty response")

        try:
            return MarketQuote.from_snapshot(
                symbol=symbol,
                price=float(quote["05. price"]),
                previous_close=_as_float(quote.get("08. previous close")),
                volume=int(quote.get("06. volume") or 0),
                day_high=_as_float(quote.get("03. high")),
                day_low=_as_float(quote.get("04. low")),
                source=self.name,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamUnavailable(self.name, symbol, f"unparsable response: {e}") from e

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_providers(config: MarketDataConfig = market_data_config) -> List[QuoteProvider]:
    """Providers in fallback priority order."""
    return [
        YahooFinanceProvider(exchange_suffix=config.DEFAULT_EXCHANGE_SUFFIX),
        AlphaVantageProvider(
            api_key=config.ALPHA_VANTAGE_API_KEY,
            timeout=config.FETCH_TIMEOUT_SECONDS,
        ),
    ]
