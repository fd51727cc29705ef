from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.domain.integration_errors import (
    IntegrationError,
    integration_error_detail,
    integration_error_http_status,
)
from src.models.integrations import WebhookIngestResponse
from src.observability import log_event
from src.services.container import IntegrationServices, get_integration_services


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

# Never persisted with a dead-lettered delivery.
_DROPPED_HEADERS = {"authorization", "cookie"}


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _delivery_headers(request: Request) -> dict[str, str]:
    return {key: value for key, value in request.headers.items() if key.lower() not in _DROPPED_HEADERS}


def _extract_payload(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be a JSON object")
    inner = body.get("payload")
    if isinstance(inner, dict):
        return inner
    return body


@router.post("/{provider}", response_model=WebhookIngestResponse, response_model_exclude_none=True)
async def ingest_provider_webhook(
    provider: str,
    request: Request,
    services: IntegrationServices = Depends(get_integration_services),
):
    req_id = _request_id(request)
    raw_body = await request.body()
    try:
        body = json.loads(raw_body.decode("utf-8")) if raw_body else {}
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    payload = _extract_payload(body)

    try:
        result = await services.ingestion.ingest_webhook(provider, _delivery_headers(request), payload)
    except IntegrationError as exc:
        raise HTTPException(
            status_code=integration_error_http_status(exc),
            detail=integration_error_detail(exc, provider=provider),
        ) from exc

    log_event(
        "webhook_processed",
        request_id=req_id,
        provider=provider,
        accepted=result.accepted,
        ingested=result.ingested,
        queued_for_retry=bool(result.queued_for_retry),
    )
    return result
