from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


IngestionFailureStatus = Literal["pending", "in_flight", "resolved", "dead"]
DeviceStatus = Literal["discovered", "linked"]


class IntegrationPayloadRequest(BaseModel):
    payload: dict[str, Any] | None = None


class LinkPoolRequest(BaseModel):
    pool_id: str = Field(min_length=1, max_length=64)


class IntegrationResponse(BaseModel):
    integration_id: str
    user_id: str
    provider: str
    status: str
    scopes: list[str] | None = None
    external_account_id: str | None = None
    has_api_key: bool = False
    api_key_preview: str | None = None
    poll_interval_minutes: int | None = None
    poll_interval_updated_at: datetime | None = None
    poll_interval_decrease_allowed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class IntegrationDeviceResponse(BaseModel):
    device_id: str
    integration_id: str
    provider_device_id: str
    device_type: str
    label: str | None = None
    pool_id: str | None = None
    status: str
    metadata: dict[str, Any] | None = None
    last_seen_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DeviceListResponse(BaseModel):
    items: list[IntegrationDeviceResponse]


class SensorReadingResponse(BaseModel):
    reading_id: int | str
    pool_id: str
    integration_id: str | None = None
    device_id: str | None = None
    metric: str
    value: float
    unit: str | None = None
    recorded_at: datetime
    source: str
    quality: int | None = None


class WebhookIngestResponse(BaseModel):
    accepted: bool
    ingested: int
    queued_for_retry: bool | None = None
    failure_id: int | str | None = None


class IngestionFailureResponse(BaseModel):
    failure_id: int | str
    provider: str
    headers: dict[str, Any] | None = None
    payload: dict[str, Any] | None = None
    status: IngestionFailureStatus
    attempts: int
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None


class RetrySweepRequest(BaseModel):
    limit: int = Field(default=50, ge=1, le=500)
    max_attempts: int = Field(default=5, ge=1, le=20)


class RetrySweepResponse(BaseModel):
    processed: int = 0
    resolved: int = 0
    dead: int = 0
    pending: int = 0


class PollRunRequest(BaseModel):
    provider: str = Field(min_length=1, max_length=64)


class PollRunResponse(BaseModel):
    provider: str
    devices_polled: int = 0
    devices_skipped: int = 0
    ingested: int = 0
    failed: int = 0
