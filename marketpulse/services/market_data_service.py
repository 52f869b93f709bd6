"""Market data cache with write-through persistence and provider fallback."""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional
import asyncio
import logging

from marketpulse.domain.entities import BatchQuoteResult, MarketQuote, utc_now
from marketpulse.domain.errors import (
    MarketPulseError,
    NotAvailable,
    PersistenceError,
    UpstreamUnavailable,
)
from marketpulse.domain.interfaces import MarketDataRepository
from marketpulse.infrastructure.providers import QuoteProvider

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    quote: MarketQuote
    cached_at: datetime


class MarketDataService:
    """Short-lived in-memory quote cache shared by REST, broadcasts and alerts.

    Lookup order: memory (younger than ``cache_ttl``), durable store (younger
    than ``cache_ttl``), then providers in priority order. Fresh quotes are
    written through to the store and the memory cache. When every provider
    fails a stale memory entry, then a stale stored quote, is served before
    giving up with ``NotAvailable``.
    """

    def __init__(
        self,
        repository: MarketDataRepository,
        providers: List[QuoteProvider],
        cache_ttl: float = 60.0,
        fetch_timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repository = repository
        self._providers = providers
        self._ttl = cache_ttl
        self._timeout = fetch_timeout
        self._clock = clock
        self._cache: Dict[str, _CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Future] = {}

    @property
    def providers(self) -> List[QuoteProvider]:
        return list(self._providers)

    async def get(self, symbol: str, use_cache: bool = True) -> MarketQuote:
        """Get the current quote for a symbol; raises NotAvailable."""
        symbol = symbol.strip().upper()
        now = self._clock()

        entry = self._cache.get(symbol)
        if use_cache and entry and (now - entry.cached_at).total_seconds() < self._ttl:
            return entry.quote

        stored = self._read_store(symbol)
        if stored is not None and stored.age_seconds(now) < self._ttl:
            self._cache[symbol] = _CacheEntry(stored, now)
            return stored

        fresh = await self._fetch_shared(symbol)
        if fresh is not None:
            return fresh

        if entry is not None:
            logger.warning(f"Serving stale cached quote for {symbol}")
            return entry.quote
        if stored is not None:
            logger.warning(f"Serving stale stored quote for {symbol}")
            return stored
        raise NotAvailable(symbol)

    async def get_batch(self, symbols: Iterable[str]) -> Dict[str, BatchQuoteResult]:
        """Resolve many symbols concurrently; failures stay per-symbol."""
        unique = list(dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()))
        if not unique:
            return {}

        results = await asyncio.gather(
            *(self.get(symbol) for symbol in unique), return_exceptions=True
        )

        batch: Dict[str, BatchQuoteResult] = {}
        for symbol, result in zip(unique, results):
            if isinstance(result, MarketQuote):
                batch[symbol] = BatchQuoteResult(status="success", data=result)
            elif isinstance(result, MarketPulseError):
                batch[symbol] = BatchQuoteResult(status="error", message=str(result))
            elif isinstance(result, Exception):
                logger.error(f"Unexpected error resolving {symbol}: {result!r}")
                batch[symbol] = BatchQuoteResult(status="error", message="Internal error")
            else:
                raise result
        return batch

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Market data cache cleared")

    def get_cache_stats(self) -> dict:
        return {"size": len(self._cache), "keys": sorted(self._cache)}

    async def close(self) -> None:
        for provider in self._providers:
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"Error closing provider {provider.name}: {e}")

    def _read_store(self, symbol: str) -> Optional[MarketQuote]:
        try:
            return self._repository.get_latest(symbol)
        except PersistenceError as e:
            logger.error(f"Store read failed for {symbol}: {e}")
            return None

    async def _fetch_shared(self, symbol: str) -> Optional[MarketQuote]:
        # Concurrent callers for one symbol share a single upstream fetch.
        future = self._inflight.get(symbol)
        if future is None:
            future = asyncio.ensure_future(self._fetch_and_store(symbol))
            self._inflight[symbol] = future

            def _release(done: asyncio.Future, key: str = symbol) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]

            future.add_done_callback(_release)
        return await asyncio.shield(future)

    async def _fetch_and_store(self, symbol: str) -> Optional[MarketQuote]:
        quote = await self._fetch_from_providers(symbol)
        if quote is None:
            return None
        try:
            self._repository.upsert(quote)
        except PersistenceError as e:
            logger.error(f"Store write failed for {symbol}: {e}")
        self._cache[symbol] = _CacheEntry(quote, self._clock())
        return quote

    async def _fetch_from_providers(self, symbol: str) -> Optional[MarketQuote]:
        for provider in self._providers:
            if not provider.supports(symbol):
                continue
            try:
                quote = await asyncio.wait_for(
                    provider.fetch_quote(symbol), timeout=self._timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"{provider.name} timed out for {symbol} after {self._timeout}s")
                continue
            except UpstreamUnavailable as e:
                logger.warning(str(e))
                continue
            logger.info(f"Fetched {symbol} from {provider.name}")
            return quote
        logger.error(f"All providers failed for {symbol}")
        return None
