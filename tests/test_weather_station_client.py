from __future__ import annotations

import asyncio

import httpx
import pytest

from src.providers.weather_station import client as weather_client


def _install_transport(monkeypatch, handler):
    real_async_client = httpx.AsyncClient

    def _factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_async_client(*args, **kwargs)

    monkeypatch.setattr(weather_client.httpx, "AsyncClient", _factory)


def _fetch(**overrides):
    kwargs = {
        "api_base": "https://ws.example/v1/",
        "api_key": "key-123456",
        "provider_device_id": "ws-001",
        "timeout_seconds": 1.0,
    }
    kwargs.update(overrides)
    return asyncio.run(weather_client.fetch_latest_observations(**kwargs))


def test_fetch_latest_observations_sends_key_and_unwraps_envelope(monkeypatch):
    seen = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["api_key"] = request.headers.get("X-API-Key")
        return httpx.Response(200, json={"observations": [{"metric": "temp_f", "value": 70}, "junk"]})

    _install_transport(monkeypatch, _handler)
    rows = _fetch()
    assert rows == [{"metric": "temp_f", "value": 70}]
    assert seen["url"] == "https://ws.example/v1/devices/ws-001/observations/latest"
    assert seen["api_key"] == "key-123456"


def test_fetch_latest_observations_treats_404_as_empty(monkeypatch):
    _install_transport(monkeypatch, lambda request: httpx.Response(404, json={"error": "unknown station"}))
    assert _fetch() == []


def test_fetch_latest_observations_rejects_invalid_key(monkeypatch):
    _install_transport(monkeypatch, lambda request: httpx.Response(401, json={"error": "nope"}))
    with pytest.raises(weather_client.WeatherStationProviderError, match="Invalid weather station API key"):
        _fetch()


def test_fetch_latest_observations_rejects_unexpected_shape(monkeypatch):
    _install_transport(monkeypatch, lambda request: httpx.Response(200, json={"status": "ok"}))
    with pytest.raises(weather_client.WeatherStationProviderError):
        _fetch()


def test_fetch_latest_observations_wraps_transport_errors(monkeypatch):
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _install_transport(monkeypatch, _handler)
    with pytest.raises(weather_client.WeatherStationProviderError, match="connectivity"):
        _fetch()
