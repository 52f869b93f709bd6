"""Alert endpoints."""
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from marketpulse.api.dependencies import (
    get_alert_engine,
    get_alert_service,
    get_current_user_id,
)
from marketpulse.api.schemas import AlertListResponse, MessageResponse, Pagination
from marketpulse.domain.entities import (
    Alert,
    AlertCreate,
    AlertCycleResult,
    AlertStats,
    AlertUpdate,
)
from marketpulse.domain.errors import AlertNotFound, AlertValidationError
from marketpulse.services.alert_engine import AlertEngine
from marketpulse.services.alert_service import AlertService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.get("", response_model=AlertListResponse)
async def list_alerts(
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    service: AlertService = Depends(get_alert_service),
) -> AlertListResponse:
    alerts, pagination = service.list_alerts(user_id, is_active=is_active, page=page, limit=limit)
    return AlertListResponse(alerts=alerts, pagination=Pagination(**pagination))


@router.post("", response_model=Alert, status_code=201)
async def create_alert(
    data: AlertCreate,
    user_id: str = Depends(get_current_user_id),
    service: AlertService = Depends(get_alert_service),
) -> Alert:
    try:
        return service.create_alert(user_id, data)
    except AlertValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/stats", response_model=AlertStats)
async def get_alert_stats(
    user_id: str = Depends(get_current_user_id),
    service: AlertService = Depends(get_alert_service),
) -> AlertStats:
    return service.get_stats(user_id)


@router.post("/check", response_model=AlertCycleResult)
async def check_alerts(
    user_id: str = Depends(get_current_user_id),
    engine: AlertEngine = Depends(get_alert_engine),
) -> AlertCycleResult:
    """Run one alert check cycle now."""
    logger.info(f"Manual alert check requested by {user_id}")
    return await engine.run_cycle()


@router.get("/{alert_id}", response_model=Alert)
async def get_alert(
    alert_id: str,
    user_id: str = Depends(get_current_user_id),
    service: AlertService = Depends(get_alert_service),
) -> Alert:
    try:
        return service.get_alert(alert_id, user_id)
    except AlertNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/{alert_id}", response_model=Alert)
async def update_alert(
    alert_id: str,
    data: AlertUpdate,
    user_id: str = Depends(get_current_user_id),
    service: AlertService = Depends(get_alert_service),
) -> Alert:
    try:
        return service.update_alert(alert_id, user_id, data)
    except AlertNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AlertValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{alert_id}", response_model=MessageResponse)
async def delete_alert(
    alert_id: str,
    user_id: str = Depends(get_current_user_id),
    service: AlertService = Depends(get_alert_service),
) -> MessageResponse:
    try:
        service.delete_alert(alert_id, user_id)
    except AlertNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return MessageResponse(message="Alert deleted")
