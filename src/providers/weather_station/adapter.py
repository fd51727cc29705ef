from __future__ import annotations

from datetime import datetime
from typing import Any

from src.domain.credentials import (
    CredentialSummary,
    load_weather_station_credentials,
    merge_weather_station_credentials,
    summarize_weather_station_credentials,
)
from src.domain.normalization import normalize_weather_metric
from src.providers.base import DefaultAdapter, NormalizedReading, PollDevice, WebhookResult
from src.providers.weather_station.client import fetch_latest_observations


WEATHER_STATION_PROVIDER = "weather_station"


class WeatherStationAdapter(DefaultAdapter):
    def __init__(
        self,
        *,
        webhook_secret: str | None = None,
        bypass_signature_secret: bool = False,
        api_base: str | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        super().__init__(
            WEATHER_STATION_PROVIDER,
            webhook_secret=webhook_secret,
            bypass_signature_secret=bypass_signature_secret,
        )
        self._api_base = api_base
        self._timeout_seconds = timeout_seconds

    def merge_credentials(self, raw: Any, existing: Any, now: datetime) -> dict[str, Any] | None:
        merged = merge_weather_station_credentials(raw, load_weather_station_credentials(existing), now)
        return merged.model_dump(mode="json")

    def summarize_credentials(self, stored: Any) -> CredentialSummary:
        return summarize_weather_station_credentials(load_weather_station_credentials(stored))

    def poll_interval_minutes(self, stored: Any) -> int | None:
        credentials = load_weather_station_credentials(stored)
        return credentials.poll_interval_minutes if credentials else None

    async def webhook(self, *, headers: dict[str, Any], payload: dict[str, Any] | None) -> WebhookResult:
        result = await super().webhook(headers=headers, payload=payload)
        return WebhookResult(accepted=True, readings=[self._canonicalize(r) for r in result.readings])

    async def poll_readings(
        self,
        *,
        device: PollDevice,
        credentials: dict[str, Any] | None,
    ) -> list[NormalizedReading]:
        stored = load_weather_station_credentials(credentials)
        if not self._api_base or stored is None or not stored.api_key:
            return []
        observations = await fetch_latest_observations(
            api_base=self._api_base,
            api_key=stored.api_key,
            provider_device_id=device.provider_device_id,
            timeout_seconds=self._timeout_seconds,
        )
        readings = []
        for row in observations:
            reading = self.parse_reading(row, provider_device_id=device.provider_device_id)
            if reading is not None:
                readings.append(self._canonicalize(reading))
        return readings

    @staticmethod
    def _canonicalize(reading: NormalizedReading) -> NormalizedReading:
        canonical = normalize_weather_metric(reading.metric)
        if canonical is None:
            return reading
        metric, unit = canonical
        return reading.model_copy(update={"metric": metric, "unit": unit})
