from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Literal


CanonicalWeatherMetric = Literal["air_temp_f", "humidity_percent", "wind_speed_mph", "uv_index"]


_WEATHER_METRICS: dict[str, tuple[CanonicalWeatherMetric, str | None]] = {
    "temperature": ("air_temp_f", "F"),
    "temp_f": ("air_temp_f", "F"),
    "air_temperature_f": ("air_temp_f", "F"),
    "humidity": ("humidity_percent", "%"),
    "wind_speed": ("wind_speed_mph", "mph"),
    "wind_mph": ("wind_speed_mph", "mph"),
    "uv": ("uv_index", None),
}


def normalize_weather_metric(metric: str) -> tuple[str, str | None] | None:
    """Map a raw weather-station metric to (canonical name, unit), or None to pass through."""
    key = str(metric).strip().lower()
    return _WEATHER_METRICS.get(key)


def parse_reading_value(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def parse_quality(value: Any) -> int | None:
    parsed = parse_reading_value(value)
    if parsed is None:
        return None
    return int(round(parsed))


def parse_recorded_at(value: Any) -> datetime | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (ValueError, OSError, OverflowError):
            return None
    text = str(value).strip()
    try:
        epoch = float(text)
    except ValueError:
        epoch = None
    if epoch is not None:
        try:
            return datetime.fromtimestamp(epoch, tz=timezone.utc)
        except (ValueError, OSError, OverflowError):
            return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def first_string(row: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = row.get(key)
        if isinstance(value, str) and value:
            return value
    return None
