from __future__ import annotations

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from src.auth import AuthContext, require_admin
from src.config import settings
from src.domain.integration_errors import (
    IntegrationError,
    integration_error_detail,
    integration_error_http_status,
)
from src.models.integrations import (
    IngestionFailureResponse,
    IngestionFailureStatus,
    PollRunRequest,
    PollRunResponse,
    RetrySweepRequest,
    RetrySweepResponse,
)
from src.observability import incr_metric, log_event, persist_metrics_snapshot
from src.services.container import IntegrationServices, get_integration_services


router = APIRouter(prefix="/api/internal/ingestion", tags=["internal-ingestion"])


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _require_scheduler_secret(provided: str | None, request_id: str | None) -> None:
    configured_secret = settings.internal_scheduler_secret
    if not configured_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="internal scheduler secret is not configured",
        )
    if not provided or not hmac.compare_digest(provided, configured_secret):
        incr_metric("ingestion.scheduled.auth_failed")
        log_event("ingestion_scheduled_auth_failed", request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid scheduler secret",
        )
    incr_metric("ingestion.scheduled.auth_succeeded")


async def _run_sweep(
    services: IntegrationServices,
    data: RetrySweepRequest,
    *,
    request_id: str | None,
    source: str,
) -> RetrySweepResponse:
    result = await services.ingestion.retry_pending_ingestion_failures(
        limit=data.limit,
        max_attempts=data.max_attempts,
    )
    log_event("ingestion_retry_run", request_id=request_id, source=source, **result.model_dump())
    persist_metrics_snapshot(
        supabase_client=services.db,
        source=source,
        request_id=request_id,
        export_url=settings.observability_export_url,
        export_bearer_token=settings.observability_export_bearer_token,
        export_timeout_seconds=settings.observability_export_timeout_seconds,
    )
    return result


async def _run_poll(services: IntegrationServices, data: PollRunRequest) -> PollRunResponse:
    try:
        return await services.ingestion.poll_provider(data.provider)
    except IntegrationError as exc:
        raise HTTPException(
            status_code=integration_error_http_status(exc),
            detail=integration_error_detail(exc, provider=data.provider),
        ) from exc


@router.get("/failures", response_model=list[IngestionFailureResponse])
async def list_ingestion_failures(
    failure_status: IngestionFailureStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    _auth: AuthContext = Depends(require_admin),
    services: IntegrationServices = Depends(get_integration_services),
):
    return services.ingestion.list_ingestion_failures(status=failure_status, limit=limit)


@router.post("/retry", response_model=RetrySweepResponse)
async def run_retry_sweep(
    data: RetrySweepRequest,
    request: Request,
    _auth: AuthContext = Depends(require_admin),
    services: IntegrationServices = Depends(get_integration_services),
):
    return await _run_sweep(services, data, request_id=_request_id(request), source="ingestion_retry_admin")


@router.post("/retry-scheduled", response_model=RetrySweepResponse)
async def run_retry_sweep_scheduled(
    data: RetrySweepRequest,
    request: Request,
    x_internal_scheduler_secret: str | None = Header(default=None),
    services: IntegrationServices = Depends(get_integration_services),
):
    request_id = _request_id(request)
    _require_scheduler_secret(x_internal_scheduler_secret, request_id)
    return await _run_sweep(services, data, request_id=request_id, source="ingestion_retry_scheduled")


@router.post("/poll", response_model=PollRunResponse)
async def run_provider_poll(
    data: PollRunRequest,
    _auth: AuthContext = Depends(require_admin),
    services: IntegrationServices = Depends(get_integration_services),
):
    return await _run_poll(services, data)


@router.post("/poll-scheduled", response_model=PollRunResponse)
async def run_provider_poll_scheduled(
    data: PollRunRequest,
    request: Request,
    x_internal_scheduler_secret: str | None = Header(default=None),
    services: IntegrationServices = Depends(get_integration_services),
):
    _require_scheduler_secret(x_internal_scheduler_secret, _request_id(request))
    return await _run_poll(services, data)
