from __future__ import annotations

from typing import Any

import httpx


class WeatherStationProviderError(Exception):
    """Provider-level exception for weather-station API failures."""


def _headers(api_key: str) -> dict[str, str]:
    return {
        "X-API-Key": api_key,
        "Accept": "application/json",
    }


async def fetch_latest_observations(
    *,
    api_base: str,
    api_key: str,
    provider_device_id: str,
    timeout_seconds: float = 10.0,
) -> list[dict[str, Any]]:
    """Fetch the most recent observations reported by one station.

    Returns raw observation objects; callers normalize metric names.
    Raises WeatherStationProviderError on failure.
    """
    if not api_key:
        raise WeatherStationProviderError("Missing weather station API key")

    url = f"{api_base.rstrip('/')}/devices/{provider_device_id}/observations/latest"
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=_headers(api_key))
    except httpx.HTTPError as exc:
        raise WeatherStationProviderError(f"Weather station connectivity error: {exc}") from exc

    if response.status_code in {401, 403}:
        raise WeatherStationProviderError("Invalid weather station API key")
    if response.status_code == 404:
        return []
    if response.status_code >= 400:
        raise WeatherStationProviderError(
            f"Weather station API returned HTTP {response.status_code}: {response.text[:200]}"
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise WeatherStationProviderError("Weather station returned non-JSON response") from exc
    if isinstance(payload, list):
        return [row for row in payload if isinstance(row, dict)]
    if isinstance(payload, dict):
        for key in ("observations", "data", "readings"):
            if isinstance(payload.get(key), list):
                return [row for row in payload[key] if isinstance(row, dict)]
    raise WeatherStationProviderError("Unexpected weather station observations response shape")
