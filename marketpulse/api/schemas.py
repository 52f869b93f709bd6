"""API request/response schemas (DTOs)."""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from marketpulse.config import market_data_config
from marketpulse.domain.entities import CAMEL_CONFIG, Alert, AlertCycleResult, BatchQuoteResult


# Response models
class HealthResponse(BaseModel):
    """Health check response."""
    model_config = CAMEL_CONFIG

    status: str
    timestamp: str
    websocket_clients: int
    rooms: int
    cache_size: int
    scheduler_running: bool
    last_alert_check: Optional[datetime] = None
    last_alert_result: Optional[AlertCycleResult] = None


class BatchQuoteRequest(BaseModel):
    """Symbols to resolve in one call."""
    symbols: List[str] = Field(min_length=1)

    @field_validator("symbols")
    @classmethod
    def _limit(cls, value: List[str]) -> List[str]:
        if len(value) > market_data_config.BATCH_MAX_SYMBOLS:
            raise ValueError(
                f"At most {market_data_config.BATCH_MAX_SYMBOLS} symbols per request"
            )
        return value


class BatchQuoteResponse(BaseModel):
    results: Dict[str, BatchQuoteResult]


class CacheStatsResponse(BaseModel):
    size: int
    keys: List[str]


class Pagination(BaseModel):
    model_config = CAMEL_CONFIG

    current: int
    total: int
    count: int
    total_items: int


class AlertListResponse(BaseModel):
    """One page of a user's alerts."""
    alerts: List[Alert]
    pagination: Pagination


class MessageResponse(BaseModel):
    message: str
