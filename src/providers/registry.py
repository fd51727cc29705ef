from __future__ import annotations

from collections.abc import Mapping

from src.config import Settings
from src.providers.base import DefaultAdapter
from src.providers.weather_station.adapter import WEATHER_STATION_PROVIDER, WeatherStationAdapter


class AdapterRegistry:
    """Provider name -> adapter lookup, built once at startup.

    Providers without a bespoke adapter get a DefaultAdapter configured with
    the shared webhook secret.
    """

    def __init__(
        self,
        adapters: Mapping[str, DefaultAdapter],
        *,
        default_webhook_secret: str | None = None,
        bypass_signature_secret: bool = False,
    ) -> None:
        self._adapters = dict(adapters)
        self._default_webhook_secret = default_webhook_secret
        self._bypass_signature_secret = bypass_signature_secret

    def get(self, provider: str) -> DefaultAdapter:
        adapter = self._adapters.get(provider)
        if adapter is not None:
            return adapter
        return DefaultAdapter(
            provider,
            webhook_secret=self._default_webhook_secret,
            bypass_signature_secret=self._bypass_signature_secret,
        )


def build_adapter_registry(settings: Settings) -> AdapterRegistry:
    bypass = settings.is_test_mode
    return AdapterRegistry(
        {
            WEATHER_STATION_PROVIDER: WeatherStationAdapter(
                webhook_secret=settings.weather_station_webhook_secret,
                bypass_signature_secret=bypass,
                api_base=settings.weather_station_api_base,
                timeout_seconds=settings.integration_provider_timeout_seconds,
            ),
        },
        default_webhook_secret=settings.integration_webhook_shared_secret,
        bypass_signature_secret=bypass,
    )
