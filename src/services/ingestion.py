from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any

from src.domain.integration_errors import IntegrationError
from src.models.integrations import (
    IngestionFailureResponse,
    PollRunResponse,
    RetrySweepResponse,
    WebhookIngestResponse,
)
from src.observability import incr_metric, log_event
from src.providers.base import DefaultAdapter, NormalizedReading, PollDevice
from src.providers.registry import AdapterRegistry
from src.services.common import Clock, ProviderPolicy, parse_ts, utc_now
from src.services.dead_letter import DeadLetterQueue


VALUE_DECIMAL_PLACES = 4

DEVICE_COLUMNS = "device_id, integration_id, provider_device_id, device_type, pool_id, metadata, last_seen_at"


class WebhookIngestionEngine:
    """Turns provider webhooks and polls into sensor_readings rows.

    Anything that fails after the signature check is handed to the dead-letter
    queue instead of being returned to the provider as an error.
    """

    def __init__(
        self,
        db: Any,
        adapters: AdapterRegistry,
        policy: ProviderPolicy,
        dead_letter: DeadLetterQueue,
        clock: Clock = utc_now,
        provider_timeout_seconds: float = 10.0,
    ) -> None:
        self._db = db
        self._adapters = adapters
        self._policy = policy
        self._dead_letter = dead_letter
        self._clock = clock
        self._timeout = provider_timeout_seconds

    async def _call(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self._timeout)

    async def ingest_webhook(
        self,
        provider: str,
        headers: dict[str, Any],
        payload: dict[str, Any] | None,
    ) -> WebhookIngestResponse:
        self._policy.ensure_enabled(provider)
        adapter = self._adapters.get(provider)
        incr_metric("webhooks.received", provider=provider)

        try:
            await self._call(adapter.verify_webhook(headers=headers, payload=payload))
        except IntegrationError as exc:
            incr_metric("webhooks.rejected", provider=provider, reason=exc.code)
            log_event("webhook_rejected", level=logging.WARNING, provider=provider, reason=exc.code)
            raise
        except Exception as exc:
            return self._queue_for_retry(provider, headers, payload, exc)

        try:
            response = await self._process(provider, adapter, headers, payload)
        except Exception as exc:
            return self._queue_for_retry(provider, headers, payload, exc)

        log_event(
            "webhook_ingested",
            provider=provider,
            accepted=response.accepted,
            ingested=response.ingested,
        )
        return response

    def _queue_for_retry(
        self,
        provider: str,
        headers: dict[str, Any],
        payload: dict[str, Any] | None,
        exc: Exception,
    ) -> WebhookIngestResponse:
        # A failed enqueue propagates so the provider redelivers.
        failure_id = self._dead_letter.enqueue(provider=provider, headers=headers, payload=payload, error=exc)
        return WebhookIngestResponse(accepted=False, ingested=0, queued_for_retry=True, failure_id=failure_id)

    async def run_full_path(
        self,
        provider: str,
        headers: dict[str, Any],
        payload: dict[str, Any] | None,
    ) -> WebhookIngestResponse:
        """Gate, verify and ingest without dead-lettering; used by the retry sweep."""
        self._policy.ensure_enabled(provider)
        adapter = self._adapters.get(provider)
        await self._call(adapter.verify_webhook(headers=headers, payload=payload))
        return await self._process(provider, adapter, headers, payload)

    async def _process(
        self,
        provider: str,
        adapter: DefaultAdapter,
        headers: dict[str, Any],
        payload: dict[str, Any] | None,
    ) -> WebhookIngestResponse:
        result = await self._call(adapter.webhook(headers=headers, payload=payload))
        if not result.accepted:
            return WebhookIngestResponse(accepted=False, ingested=0)
        ingested = self._persist_webhook_readings(provider, result.readings)
        incr_metric("ingestion.readings_ingested", value=ingested, provider=provider)
        return WebhookIngestResponse(accepted=True, ingested=ingested)

    def _linked_devices_by_provider_id(
        self,
        provider: str,
        provider_device_ids: list[str],
    ) -> dict[str, dict[str, Any]]:
        integrations = self._db.table("integrations").select("integration_id").eq("provider", provider).execute()
        integration_ids = [row["integration_id"] for row in integrations.data or []]
        if not integration_ids:
            return {}
        devices = (
            self._db.table("integration_devices")
            .select(DEVICE_COLUMNS)
            .in_("integration_id", integration_ids)
            .in_("provider_device_id", provider_device_ids)
            .execute()
        )
        index: dict[str, dict[str, Any]] = {}
        for row in devices.data or []:
            key = row["provider_device_id"]
            current = index.get(key)
            # The same hardware id can appear under several integrations; a linked row wins.
            if current is None or (not current.get("pool_id") and row.get("pool_id")):
                index[key] = row
        return index

    def _reading_row(
        self,
        provider: str,
        device: dict[str, Any],
        reading: NormalizedReading,
        now: datetime,
    ) -> dict[str, Any]:
        return {
            "pool_id": device["pool_id"],
            "integration_id": device["integration_id"],
            "device_id": device["device_id"],
            "metric": reading.metric,
            "value": round(reading.value, VALUE_DECIMAL_PLACES),
            "unit": reading.unit,
            "recorded_at": (reading.recorded_at or now).isoformat(),
            "source": provider,
            "quality": reading.quality,
            "raw_payload": reading.raw_payload,
        }

    def _persist_webhook_readings(self, provider: str, readings: list[NormalizedReading]) -> int:
        if not readings:
            return 0
        devices = self._linked_devices_by_provider_id(
            provider,
            sorted({reading.provider_device_id for reading in readings}),
        )
        now = self._clock()
        rows = []
        dropped = 0
        for reading in readings:
            device = devices.get(reading.provider_device_id)
            if device is None or not device.get("pool_id"):
                dropped += 1
                continue
            rows.append(self._reading_row(provider, device, reading, now))
        if dropped:
            incr_metric("ingestion.readings_dropped", value=dropped, provider=provider)
            log_event("ingestion_readings_dropped", provider=provider, dropped=dropped)
        if rows:
            self._db.table("sensor_readings").insert(rows).execute()
        return len(rows)

    async def retry_pending_ingestion_failures(
        self,
        limit: int = 50,
        max_attempts: int = 5,
    ) -> RetrySweepResponse:
        return await self._dead_letter.retry_pending(self.run_full_path, limit=limit, max_attempts=max_attempts)

    def list_ingestion_failures(self, status: str | None = None, limit: int = 100) -> list[IngestionFailureResponse]:
        return self._dead_letter.list_failures(status=status, limit=limit)

    async def poll_provider(self, provider: str) -> PollRunResponse:
        """Poll every pool-linked device of a provider that is due.

        A device is due when its integration's poll interval has elapsed since
        ``last_seen_at``. Errors are per device; one bad device does not stop
        the run.
        """
        self._policy.ensure_enabled(provider)
        adapter = self._adapters.get(provider)
        summary = PollRunResponse(provider=provider)
        integrations = (
            self._db.table("integrations")
            .select("integration_id, credentials")
            .eq("provider", provider)
            .execute()
        )
        for integration in integrations.data or []:
            credentials = integration.get("credentials")
            interval = adapter.poll_interval_minutes(credentials)
            devices = (
                self._db.table("integration_devices")
                .select(DEVICE_COLUMNS)
                .eq("integration_id", integration["integration_id"])
                .execute()
            )
            for device in devices.data or []:
                if not device.get("pool_id"):
                    continue
                now = self._clock()
                last_seen_at = parse_ts(device.get("last_seen_at"))
                if interval and last_seen_at and last_seen_at + timedelta(minutes=interval) > now:
                    summary.devices_skipped += 1
                    continue
                try:
                    readings = await self._call(
                        adapter.poll_readings(
                            device=PollDevice(
                                provider_device_id=device["provider_device_id"],
                                device_type=device.get("device_type"),
                                metadata=device.get("metadata"),
                            ),
                            credentials=credentials,
                        )
                    )
                    rows = [self._reading_row(provider, device, reading, now) for reading in readings]
                    # At most one insert per device per poll window.
                    self._db.table("integration_devices").update(
                        {"last_seen_at": now.isoformat(), "updated_at": now.isoformat()}
                    ).eq("device_id", device["device_id"]).execute()
                    if rows:
                        self._db.table("sensor_readings").insert(rows).execute()
                except Exception as exc:
                    summary.failed += 1
                    incr_metric("ingestion.poll_failed", provider=provider)
                    log_event(
                        "integration_poll_failed",
                        level=logging.WARNING,
                        provider=provider,
                        device_id=device["device_id"],
                        error=str(exc) or type(exc).__name__,
                    )
                    continue
                summary.devices_polled += 1
                summary.ingested += len(rows)

        incr_metric("ingestion.readings_ingested", value=summary.ingested, provider=provider)
        log_event("integration_poll_completed", **summary.model_dump())
        return summary
