"""Tests for the market data cache."""
import asyncio

import pytest

from conftest import FakeProvider
from marketpulse.domain.entities import MarketQuote
from marketpulse.domain.errors import NotAvailable, PersistenceError
from marketpulse.repository.memory import InMemoryMarketDataRepository
from marketpulse.services.market_data_service import MarketDataService


def test_change_derived_from_previous_close():
    quote = MarketQuote.from_snapshot("tcs", price=105, previous_close=100, source="test")
    assert quote.symbol == "TCS"
    assert quote.change == 5.0
    assert quote.change_percent == 5.0


def test_change_zero_without_previous_close():
    quote = MarketQuote.from_snapshot("TCS", price=105, previous_close=0, source="test")
    assert quote.change == 0
    assert quote.change_percent == 0


def test_quote_serializes_camel_case():
    quote = MarketQuote.from_snapshot("TCS", price=105, previous_close=100, source="test")
    payload = quote.model_dump(mode="json", by_alias=True)
    assert payload["changePercent"] == 5.0
    assert payload["previousClose"] == 100
    assert "change_percent" not in payload


@pytest.mark.asyncio
async def test_get_fetches_then_serves_from_memory(market_data, provider, market_repository):
    provider.set_quote("TCS", 3500, 3450)

    first = await market_data.get("tcs")
    second = await market_data.get("TCS")

    assert first.price == 3500
    assert second == first
    assert provider.calls == ["TCS"]
    assert market_repository.get_latest("TCS") == first


@pytest.mark.asyncio
async def test_get_refetches_after_ttl(market_data, provider, clock):
    provider.set_quote("TCS", 3500, 3450)
    await market_data.get("TCS")

    clock.advance(seconds=61)
    provider.set_quote("TCS", 3510, 3450)
    quote = await market_data.get("TCS")

    assert quote.price == 3510
    assert provider.calls == ["TCS", "TCS"]


@pytest.mark.asyncio
async def test_use_cache_false_reads_store_before_provider(market_data, provider, market_repository, clock):
    market_repository.upsert(
        MarketQuote.from_snapshot("INFY", 1500, 1490, source="stored", timestamp=clock())
    )
    quote = await market_data.get("INFY", use_cache=False)

    assert quote.source == "stored"
    assert provider.calls == []


@pytest.mark.asyncio
async def test_stale_store_record_is_refreshed(market_data, provider, market_repository, clock):
    market_repository.upsert(
        MarketQuote.from_snapshot("INFY", 1500, 1490, source="stored", timestamp=clock())
    )
    clock.advance(minutes=5)
    provider.set_quote("INFY", 1520, 1490)

    quote = await market_data.get("INFY")

    assert quote.price == 1520
    assert market_repository.get_latest("INFY").price == 1520


@pytest.mark.asyncio
async def test_stale_memory_served_when_providers_fail(market_data, provider, market_repository, clock):
    provider.set_quote("TCS", 3500, 3450)
    await market_data.get("TCS")

    clock.advance(minutes=10)
    provider.failing.add("TCS")
    market_repository._quotes.clear()

    quote = await market_data.get("TCS")
    assert quote.price == 3500


@pytest.mark.asyncio
async def test_stale_store_served_when_providers_fail(market_data, provider, market_repository, clock):
    market_repository.upsert(
        MarketQuote.from_snapshot("WIPRO", 450, 440, source="stored", timestamp=clock())
    )
    clock.advance(hours=2)

    quote = await market_data.get("WIPRO")
    assert quote.source == "stored"


@pytest.mark.asyncio
async def test_not_available_when_everything_fails(market_data):
    with pytest.raises(NotAvailable):
        await market_data.get("UNKNOWN")


@pytest.mark.asyncio
async def test_fallback_to_second_provider(market_repository, clock):
    primary = FakeProvider(clock, name="primary")
    secondary = FakeProvider(clock, name="secondary")
    secondary.set_quote("HDFCBANK", 1650, 1640)
    service = MarketDataService(market_repository, [primary, secondary], clock=clock)

    quote = await service.get("HDFCBANK")

    assert quote.source == "secondary"
    assert primary.calls == ["HDFCBANK"]


@pytest.mark.asyncio
async def test_provider_timeout_counts_as_failure(market_repository, clock):
    slow = FakeProvider(clock, name="slow", delay=0.5)
    slow.set_quote("TCS", 3500, 3450)
    fast = FakeProvider(clock, name="fast")
    fast.set_quote("TCS", 3499, 3450)
    service = MarketDataService(market_repository, [slow, fast], fetch_timeout=0.05, clock=clock)

    quote = await service.get("TCS")
    assert quote.source == "fast"


@pytest.mark.asyncio
async def test_store_write_failure_does_not_fail_fetch(provider, clock):
    class BrokenRepository(InMemoryMarketDataRepository):
        def upsert(self, quote):
            raise PersistenceError("disk full")

    provider.set_quote("TCS", 3500, 3450)
    service = MarketDataService(BrokenRepository(), [provider], clock=clock)

    quote = await service.get("TCS")
    assert quote.price == 3500


@pytest.mark.asyncio
async def test_batch_isolates_failures(market_data, provider):
    provider.set_quote("A", 10, 9)
    provider.set_quote("C", 30, 29)
    provider.failing.add("B")

    results = await market_data.get_batch(["a", "B", "c", "A"])

    assert list(results) == ["A", "B", "C"]
    assert results["A"].ok and results["A"].data.price == 10
    assert results["C"].ok and results["C"].data.price == 30
    assert results["B"].status == "error"
    assert "B" in results["B"].message


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_fetch(market_repository, clock):
    slow = FakeProvider(clock, delay=0.05)
    slow.set_quote("TCS", 3500, 3450)
    service = MarketDataService(market_repository, [slow], clock=clock)

    quotes = await asyncio.gather(*(service.get("TCS") for _ in range(5)))

    assert slow.calls == ["TCS"]
    assert all(q.price == 3500 for q in quotes)


@pytest.mark.asyncio
async def test_clear_cache_and_stats(market_data, provider):
    provider.set_quote("TCS", 3500, 3450)
    provider.set_quote("INFY", 1500, 1490)
    await market_data.get_batch(["TCS", "INFY"])

    assert market_data.get_cache_stats() == {"size": 2, "keys": ["INFY", "TCS"]}

    market_data.clear_cache()
    assert market_data.get_cache_stats() == {"size": 0, "keys": []}
