from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from src.auth import AuthContext, get_current_user
from src.domain.integration_errors import (
    IntegrationError,
    integration_error_detail,
    integration_error_http_status,
)
from src.models.integrations import SensorReadingResponse
from src.services.container import IntegrationServices, get_integration_services


router = APIRouter(prefix="/api/pools", tags=["sensor-readings"])


@router.get("/{pool_id}/sensor-readings", response_model=list[SensorReadingResponse])
async def list_pool_sensor_readings(
    pool_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    auth: AuthContext = Depends(get_current_user),
    services: IntegrationServices = Depends(get_integration_services),
):
    try:
        return await services.devices.list_pool_sensor_readings(auth.user_id, pool_id, limit=limit)
    except IntegrationError as exc:
        raise HTTPException(
            status_code=integration_error_http_status(exc),
            detail=integration_error_detail(exc, pool_id=pool_id),
        ) from exc
