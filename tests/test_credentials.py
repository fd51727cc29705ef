from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.domain.credentials import (
    DEFAULT_POLL_INTERVAL_MINUTES,
    WeatherStationCredentials,
    load_opaque_credentials,
    mask_api_key,
    merge_opaque_credentials,
    merge_weather_station_credentials,
    summarize_weather_station_credentials,
)
from src.domain.integration_errors import ValidationError


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_mask_api_key():
    assert mask_api_key("abcdefghij") == "abcd****ij"
    assert mask_api_key("abcdef") == "******"
    assert mask_api_key("  abcdefgh  ") == "abcd****gh"


def test_first_connect_uses_default_interval():
    merged = merge_weather_station_credentials(None, None, NOW)
    assert merged.poll_interval_minutes == DEFAULT_POLL_INTERVAL_MINUTES
    assert merged.poll_interval_updated_at == NOW
    assert merged.poll_interval_lowered_at is None
    assert merged.api_key is None


def test_camel_case_input_is_accepted_and_trimmed():
    merged = merge_weather_station_credentials({"apiKey": "  key-123456 ", "pollIntervalMinutes": 30}, None, NOW)
    assert merged.api_key == "key-123456"
    assert merged.poll_interval_minutes == 30
    # First-time setting is not a reduction.
    assert merged.poll_interval_lowered_at is None


@pytest.mark.parametrize(
    "raw",
    [
        {"poll_interval_minutes": 29},
        {"poll_interval_minutes": 61},
        {"poll_interval_minutes": "45"},
        {"poll_interval_minutes": 45.0},
        {"api_key": ""},
        {"api_key": "x" * 513},
        {"unexpected": True},
        "not-an-object",
    ],
)
def test_invalid_credentials_are_rejected(raw):
    with pytest.raises(ValidationError):
        merge_weather_station_credentials(raw, None, NOW)


def test_lowering_twice_within_cooldown_fails_but_raising_is_allowed():
    existing = merge_weather_station_credentials({"poll_interval_minutes": 60}, None, NOW)

    lowered = merge_weather_station_credentials({"poll_interval_minutes": 50}, existing, NOW + timedelta(minutes=5))
    assert lowered.poll_interval_minutes == 50
    assert lowered.poll_interval_lowered_at == NOW + timedelta(minutes=5)

    with pytest.raises(ValidationError, match="once every 6 hours"):
        merge_weather_station_credentials({"poll_interval_minutes": 40}, lowered, NOW + timedelta(hours=1))

    raised = merge_weather_station_credentials({"poll_interval_minutes": 55}, lowered, NOW + timedelta(hours=1))
    assert raised.poll_interval_minutes == 55
    assert raised.poll_interval_lowered_at == lowered.poll_interval_lowered_at

    # Raising does not reset the cooldown window.
    with pytest.raises(ValidationError):
        merge_weather_station_credentials({"poll_interval_minutes": 45}, raised, NOW + timedelta(hours=2))

    again = merge_weather_station_credentials(
        {"poll_interval_minutes": 30},
        raised,
        NOW + timedelta(hours=6, minutes=6),
    )
    assert again.poll_interval_minutes == 30


def test_omitted_api_key_keeps_existing():
    existing = WeatherStationCredentials(api_key="key-123456", poll_interval_minutes=45, poll_interval_updated_at=NOW)
    merged = merge_weather_station_credentials({"poll_interval_minutes": 50}, existing, NOW)
    assert merged.api_key == "key-123456"


def test_summary_masks_key_and_reports_next_decrease():
    credentials = WeatherStationCredentials(
        api_key="key-123456",
        poll_interval_minutes=30,
        poll_interval_updated_at=NOW,
        poll_interval_lowered_at=NOW,
    )
    summary = summarize_weather_station_credentials(credentials)
    assert summary.has_api_key is True
    assert summary.api_key_preview == "key-****56"
    assert summary.poll_interval_decrease_allowed_at == NOW + timedelta(hours=6)

    empty = summarize_weather_station_credentials(None)
    assert empty.has_api_key is False
    assert empty.api_key_preview is None
    assert empty.poll_interval_minutes == DEFAULT_POLL_INTERVAL_MINUTES


def test_opaque_credentials_keep_existing_when_none_submitted():
    existing = load_opaque_credentials({"token": "t-1"})
    assert merge_opaque_credentials(None, existing).data == {"token": "t-1"}
    assert merge_opaque_credentials({"token": "t-2"}, existing).data == {"token": "t-2"}
    assert load_opaque_credentials({"kind": "opaque", "data": {"token": "t-3"}}).data == {"token": "t-3"}
    assert load_opaque_credentials("junk") is None
