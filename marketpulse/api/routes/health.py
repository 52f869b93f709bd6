"""Health check endpoint."""
from fastapi import APIRouter, Depends, Request

from marketpulse.api.dependencies import Services, get_services
from marketpulse.api.schemas import HealthResponse
from marketpulse.domain.entities import utc_now

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    services: Services = Depends(get_services),
) -> HealthResponse:
    """Liveness plus a summary of in-process state."""
    stats = services.connection_manager.get_connection_stats()
    scheduler = getattr(request.app.state, "scheduler", None)
    return HealthResponse(
        status="healthy",
        timestamp=utc_now().isoformat(),
        websocket_clients=stats["total_connections"],
        rooms=stats["rooms"],
        cache_size=services.market_data.get_cache_stats()["size"],
        scheduler_running=bool(scheduler and scheduler.running),
        last_alert_check=services.alert_engine.last_run_at,
        last_alert_result=services.alert_engine.last_result,
    )
