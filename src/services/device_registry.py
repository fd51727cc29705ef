from __future__ import annotations

from typing import Any

from src.domain.integration_errors import NotFound
from src.models.integrations import IntegrationDeviceResponse, SensorReadingResponse
from src.observability import incr_metric, log_event
from src.providers.registry import AdapterRegistry
from src.services.common import Clock, ProviderPolicy, utc_now
from src.services.integration_registry import IntegrationRegistry
from src.services.pools import PoolAccess


DEVICE_COLUMNS = (
    "device_id, integration_id, provider_device_id, device_type, label, pool_id, status, "
    "metadata, last_seen_at, created_at, updated_at"
)
READING_COLUMNS = (
    "reading_id, pool_id, integration_id, device_id, metric, value, unit, recorded_at, source, quality"
)


def _device_view(row: dict[str, Any]) -> IntegrationDeviceResponse:
    return IntegrationDeviceResponse(
        device_id=str(row["device_id"]),
        integration_id=str(row["integration_id"]),
        provider_device_id=row["provider_device_id"],
        device_type=row.get("device_type") or "sensor",
        label=row.get("label"),
        pool_id=row.get("pool_id"),
        status=row.get("status") or "discovered",
        metadata=row.get("metadata"),
        last_seen_at=row.get("last_seen_at"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class DeviceRegistry:
    def __init__(
        self,
        db: Any,
        adapters: AdapterRegistry,
        policy: ProviderPolicy,
        integrations: IntegrationRegistry,
        pools: PoolAccess,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._adapters = adapters
        self._policy = policy
        self._integrations = integrations
        self._pools = pools
        self._clock = clock

    def _device_rows(self, integration_id: str) -> list[dict[str, Any]]:
        result = (
            self._db.table("integration_devices")
            .select(DEVICE_COLUMNS)
            .eq("integration_id", integration_id)
            .order("created_at", desc=True)
            .execute()
        )
        return result.data or []

    async def list_devices(self, user_id: str, integration_id: str) -> list[IntegrationDeviceResponse]:
        self._integrations.get_owned_integration(user_id, integration_id)
        return [_device_view(row) for row in self._device_rows(integration_id)]

    async def discover_devices(
        self,
        user_id: str,
        integration_id: str,
        payload: dict[str, Any] | None = None,
    ) -> list[IntegrationDeviceResponse]:
        """Ask the provider for its devices and upsert them.

        Rediscovery refreshes type, label and metadata and puts the row back in
        ``discovered``; an existing pool link is left alone.
        """
        integration = self._integrations.get_owned_integration(user_id, integration_id)
        provider = integration["provider"]
        self._policy.ensure_enabled(provider)
        adapter = self._adapters.get(provider)
        devices = await adapter.discover_devices(
            user_id=user_id,
            payload=payload,
            credentials=integration.get("credentials"),
        )
        now = self._clock().isoformat()
        for device in devices:
            self._db.table("integration_devices").upsert(
                {
                    "integration_id": integration_id,
                    "provider_device_id": device.provider_device_id,
                    "device_type": device.device_type,
                    "label": device.label,
                    "metadata": device.metadata,
                    "status": "discovered",
                    "updated_at": now,
                },
                on_conflict="integration_id,provider_device_id",
            ).execute()

        incr_metric("integrations.devices_discovered", value=len(devices), provider=provider)
        log_event(
            "integration_devices_discovered",
            user_id=user_id,
            integration_id=integration_id,
            provider=provider,
            device_count=len(devices),
        )
        return [_device_view(row) for row in self._device_rows(integration_id)]

    async def link_device_to_pool(
        self,
        user_id: str,
        integration_id: str,
        device_id: str,
        pool_id: str,
    ) -> IntegrationDeviceResponse:
        self._pools.ensure_pool_access(pool_id, user_id)
        self._integrations.get_owned_integration(user_id, integration_id)
        result = (
            self._db.table("integration_devices")
            .update({"pool_id": pool_id, "status": "linked", "updated_at": self._clock().isoformat()})
            .eq("device_id", device_id)
            .eq("integration_id", integration_id)
            .execute()
        )
        if not result.data:
            raise NotFound("Device not found")
        log_event(
            "integration_device_linked",
            user_id=user_id,
            integration_id=integration_id,
            device_id=device_id,
            pool_id=pool_id,
        )
        return _device_view(result.data[0])

    async def list_pool_sensor_readings(
        self,
        user_id: str,
        pool_id: str,
        limit: int = 100,
    ) -> list[SensorReadingResponse]:
        self._pools.ensure_pool_access(pool_id, user_id)
        result = (
            self._db.table("sensor_readings")
            .select(READING_COLUMNS)
            .eq("pool_id", pool_id)
            .order("recorded_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [SensorReadingResponse(**row) for row in result.data or []]
