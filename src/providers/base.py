from __future__ import annotations

import hmac
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from src.domain.credentials import (
    CredentialSummary,
    load_opaque_credentials,
    merge_opaque_credentials,
)
from src.domain.integration_errors import Unauthorized, WebhookSecretNotConfigured
from src.domain.normalization import (
    first_string,
    parse_quality,
    parse_reading_value,
    parse_recorded_at,
)


SIGNATURE_HEADER = "x-integration-signature"


class ConnectResult(BaseModel):
    external_account_id: str | None = None
    scopes: list[str] | None = None
    credentials: dict[str, Any] | None = None


class DiscoveredDevice(BaseModel):
    provider_device_id: str
    device_type: str = "sensor"
    label: str | None = None
    metadata: dict[str, Any] | None = None


class NormalizedReading(BaseModel):
    provider_device_id: str
    metric: str
    value: float
    unit: str | None = None
    recorded_at: datetime | None = None
    quality: int | None = None
    raw_payload: Any = None


class WebhookResult(BaseModel):
    accepted: bool
    readings: list[NormalizedReading] = Field(default_factory=list)


class PollDevice(BaseModel):
    provider_device_id: str
    device_type: str | None = None
    metadata: dict[str, Any] | None = None


def header_value(headers: dict[str, Any] | None, name: str) -> str | None:
    if not headers:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() != wanted:
            continue
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        return str(value) if value else None
    return None


def connect_result_from_payload(payload: dict[str, Any] | None) -> ConnectResult:
    """Read account id, scopes and credentials from a connect payload, ignoring malformed fields."""
    payload = payload or {}
    external_account_id = payload.get("external_account_id", payload.get("externalAccountId"))
    raw_scopes = payload.get("scopes")
    credentials = payload.get("credentials")
    return ConnectResult(
        external_account_id=external_account_id if isinstance(external_account_id, str) else None,
        scopes=[s for s in raw_scopes if isinstance(s, str)] if isinstance(raw_scopes, list) else None,
        credentials=credentials if isinstance(credentials, dict) else None,
    )


def verify_shared_secret_signature(
    headers: dict[str, Any] | None,
    *,
    provider: str,
    secret: str | None,
    bypass_secret_check: bool,
) -> None:
    signature = header_value(headers, SIGNATURE_HEADER)
    if not signature:
        raise Unauthorized("Missing webhook signature")
    if bypass_secret_check:
        return
    if not secret:
        raise WebhookSecretNotConfigured(f"Webhook secret is not configured for {provider}")
    if not hmac.compare_digest(signature.encode("utf-8"), secret.encode("utf-8")):
        raise Unauthorized("Invalid webhook signature")


class DefaultAdapter:
    """Adapter for providers without bespoke behavior.

    Payloads are expected to already be close to the internal shape:
    ``{"devices": [...]}`` for discovery and ``{"readings": [...]}`` for
    webhooks.
    """

    def __init__(
        self,
        provider: str,
        *,
        webhook_secret: str | None = None,
        bypass_signature_secret: bool = False,
    ) -> None:
        self.provider = provider
        self._webhook_secret = webhook_secret
        self._bypass_signature_secret = bypass_signature_secret

    # Credentials are opaque for providers without a known shape.
    def merge_credentials(self, raw: Any, existing: Any, now: datetime) -> dict[str, Any] | None:
        merged = merge_opaque_credentials(raw, load_opaque_credentials(existing))
        return merged.model_dump(mode="json") if merged else None

    def summarize_credentials(self, stored: Any) -> CredentialSummary:
        return CredentialSummary()

    def poll_interval_minutes(self, stored: Any) -> int | None:
        return None

    async def connect(self, *, user_id: str, payload: dict[str, Any] | None) -> ConnectResult:
        return connect_result_from_payload(payload)

    async def callback(self, *, user_id: str, payload: dict[str, Any] | None) -> ConnectResult:
        return await self.connect(user_id=user_id, payload=payload)

    async def discover_devices(
        self,
        *,
        user_id: str,
        payload: dict[str, Any] | None,
        credentials: dict[str, Any] | None,
    ) -> list[DiscoveredDevice]:
        rows = (payload or {}).get("devices")
        if not isinstance(rows, list):
            return []
        devices: list[DiscoveredDevice] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            provider_device_id = first_string(row, "providerDeviceId", "provider_device_id")
            if not provider_device_id:
                continue
            devices.append(
                DiscoveredDevice(
                    provider_device_id=provider_device_id,
                    device_type=first_string(row, "deviceType", "device_type") or "sensor",
                    label=first_string(row, "label"),
                    metadata=row,
                )
            )
        return devices

    async def verify_webhook(self, *, headers: dict[str, Any], payload: dict[str, Any] | None) -> None:
        verify_shared_secret_signature(
            headers,
            provider=self.provider,
            secret=self._webhook_secret,
            bypass_secret_check=self._bypass_signature_secret,
        )

    async def webhook(self, *, headers: dict[str, Any], payload: dict[str, Any] | None) -> WebhookResult:
        return WebhookResult(accepted=True, readings=self.parse_readings((payload or {}).get("readings")))

    async def poll_readings(
        self,
        *,
        device: PollDevice,
        credentials: dict[str, Any] | None,
    ) -> list[NormalizedReading]:
        return []

    def parse_readings(self, rows: Any) -> list[NormalizedReading]:
        if not isinstance(rows, list):
            return []
        readings: list[NormalizedReading] = []
        for row in rows:
            reading = self.parse_reading(row)
            if reading is not None:
                readings.append(reading)
        return readings

    def parse_reading(self, row: Any, provider_device_id: str | None = None) -> NormalizedReading | None:
        if not isinstance(row, dict):
            return None
        device_id = provider_device_id or first_string(row, "providerDeviceId", "provider_device_id")
        metric = first_string(row, "metric")
        value = parse_reading_value(row.get("value"))
        if not device_id or not metric or value is None:
            return None
        recorded_at = row.get("recordedAt", row.get("recorded_at"))
        raw_payload = row.get("rawPayload", row.get("raw_payload"))
        return NormalizedReading(
            provider_device_id=device_id,
            metric=metric,
            value=value,
            unit=first_string(row, "unit"),
            recorded_at=parse_recorded_at(recorded_at),
            quality=parse_quality(row.get("quality")),
            raw_payload=raw_payload if raw_payload is not None else row,
        )
