from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from src.auth import AuthContext, get_current_user
from src.domain.integration_errors import (
    IntegrationError,
    integration_error_detail,
    integration_error_http_status,
)
from src.models.integrations import (
    DeviceListResponse,
    IntegrationDeviceResponse,
    IntegrationPayloadRequest,
    IntegrationResponse,
    LinkPoolRequest,
)
from src.services.container import IntegrationServices, get_integration_services


router = APIRouter(prefix="/api/integrations", tags=["integrations"])


def _raise_integration_http_error(exc: IntegrationError, **context) -> None:
    raise HTTPException(
        status_code=integration_error_http_status(exc),
        detail=integration_error_detail(exc, **context),
    ) from exc


@router.get("", response_model=list[IntegrationResponse])
async def list_integrations(
    auth: AuthContext = Depends(get_current_user),
    services: IntegrationServices = Depends(get_integration_services),
):
    return await services.integrations.list_integrations(auth.user_id)


@router.post("/{provider}/connect", response_model=IntegrationResponse, status_code=status.HTTP_201_CREATED)
async def connect_integration(
    provider: str,
    data: IntegrationPayloadRequest,
    auth: AuthContext = Depends(get_current_user),
    services: IntegrationServices = Depends(get_integration_services),
):
    try:
        return await services.integrations.connect(auth.user_id, provider, data.payload)
    except IntegrationError as exc:
        _raise_integration_http_error(exc, provider=provider)


@router.post("/{provider}/callback", response_model=IntegrationResponse)
async def integration_callback(
    provider: str,
    data: IntegrationPayloadRequest,
    auth: AuthContext = Depends(get_current_user),
    services: IntegrationServices = Depends(get_integration_services),
):
    try:
        return await services.integrations.callback(auth.user_id, provider, data.payload)
    except IntegrationError as exc:
        _raise_integration_http_error(exc, provider=provider)


@router.delete("/{integration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect_integration(
    integration_id: str,
    auth: AuthContext = Depends(get_current_user),
    services: IntegrationServices = Depends(get_integration_services),
):
    deleted = await services.integrations.disconnect(auth.user_id, integration_id)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Integration not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{integration_id}/devices", response_model=DeviceListResponse)
async def list_integration_devices(
    integration_id: str,
    auth: AuthContext = Depends(get_current_user),
    services: IntegrationServices = Depends(get_integration_services),
):
    try:
        items = await services.devices.list_devices(auth.user_id, integration_id)
    except IntegrationError as exc:
        _raise_integration_http_error(exc, integration_id=integration_id)
    return DeviceListResponse(items=items)


@router.post("/{integration_id}/devices/discover", response_model=DeviceListResponse)
async def discover_integration_devices(
    integration_id: str,
    data: IntegrationPayloadRequest,
    auth: AuthContext = Depends(get_current_user),
    services: IntegrationServices = Depends(get_integration_services),
):
    try:
        items = await services.devices.discover_devices(auth.user_id, integration_id, data.payload)
    except IntegrationError as exc:
        _raise_integration_http_error(exc, integration_id=integration_id)
    return DeviceListResponse(items=items)


@router.post("/{integration_id}/devices/{device_id}/link-pool", response_model=IntegrationDeviceResponse)
async def link_device_to_pool(
    integration_id: str,
    device_id: str,
    data: LinkPoolRequest,
    auth: AuthContext = Depends(get_current_user),
    services: IntegrationServices = Depends(get_integration_services),
):
    try:
        return await services.devices.link_device_to_pool(auth.user_id, integration_id, device_id, data.pool_id)
    except IntegrationError as exc:
        _raise_integration_http_error(exc, integration_id=integration_id, device_id=device_id)
