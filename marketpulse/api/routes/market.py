"""Market data endpoints."""
from fastapi import APIRouter, Depends, HTTPException
import logging

from marketpulse.api.dependencies import get_market_data_service
from marketpulse.api.schemas import (
    BatchQuoteRequest,
    BatchQuoteResponse,
    CacheStatsResponse,
    MessageResponse,
)
from marketpulse.domain.entities import INDEX_ALIASES, MarketQuote
from marketpulse.domain.errors import NotAvailable
from marketpulse.services.market_data_service import MarketDataService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/market", tags=["market"])


@router.get("/stock/{symbol}", response_model=MarketQuote)
async def get_stock(
    symbol: str,
    use_cache: bool = True,
    service: MarketDataService = Depends(get_market_data_service),
) -> MarketQuote:
    """Get the current quote for a symbol."""
    try:
        return await service.get(symbol, use_cache=use_cache)
    except NotAvailable as e:
        logger.warning(f"No quote for {symbol}: {e}")
        raise HTTPException(status_code=404, detail=str(e))


@router.post(
    "/stocks/batch",
    response_model=BatchQuoteResponse,
    response_model_exclude_none=True,
)
async def get_stocks_batch(
    request: BatchQuoteRequest,
    service: MarketDataService = Depends(get_market_data_service),
) -> BatchQuoteResponse:
    """Quotes for many symbols; each entry succeeds or fails on its own."""
    return BatchQuoteResponse(results=await service.get_batch(request.symbols))


@router.get(
    "/indices",
    response_model=BatchQuoteResponse,
    response_model_exclude_none=True,
)
async def get_indices(
    service: MarketDataService = Depends(get_market_data_service),
) -> BatchQuoteResponse:
    """NIFTY, SENSEX and BANKNIFTY."""
    return BatchQuoteResponse(results=await service.get_batch(INDEX_ALIASES))


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    service: MarketDataService = Depends(get_market_data_service),
) -> CacheStatsResponse:
    return CacheStatsResponse(**service.get_cache_stats())


@router.delete("/cache", response_model=MessageResponse)
async def clear_cache(
    service: MarketDataService = Depends(get_market_data_service),
) -> MessageResponse:
    service.clear_cache()
    return MessageResponse(message="Cache cleared")
