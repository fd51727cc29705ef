from __future__ import annotations

from datetime import datetime, timedelta
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic import ValidationError as PydanticValidationError

from src.domain.integration_errors import ValidationError


MIN_POLL_INTERVAL_MINUTES = 30
DEFAULT_POLL_INTERVAL_MINUTES = 45
MAX_POLL_INTERVAL_MINUTES = 60
POLL_INTERVAL_COOLDOWN = timedelta(hours=6)

ApiKey = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=512)]
PollInterval = Annotated[
    int,
    Field(strict=True, ge=MIN_POLL_INTERVAL_MINUTES, le=MAX_POLL_INTERVAL_MINUTES),
]


class WeatherStationCredentialsInput(BaseModel):
    """Credential fields a client may submit on connect/callback."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    api_key: ApiKey | None = Field(default=None, alias="apiKey")
    poll_interval_minutes: PollInterval | None = Field(default=None, alias="pollIntervalMinutes")


class WeatherStationCredentials(BaseModel):
    kind: Literal["weather_station"] = "weather_station"
    api_key: str | None = None
    poll_interval_minutes: int = DEFAULT_POLL_INTERVAL_MINUTES
    poll_interval_updated_at: datetime | None = None
    poll_interval_lowered_at: datetime | None = None


class OpaqueCredentials(BaseModel):
    kind: Literal["opaque"] = "opaque"
    data: dict[str, Any] = Field(default_factory=dict)


ProviderCredentials = Annotated[
    Union[WeatherStationCredentials, OpaqueCredentials],
    Field(discriminator="kind"),
]


class CredentialSummary(BaseModel):
    has_api_key: bool = False
    api_key_preview: str | None = None
    poll_interval_minutes: int | None = None
    poll_interval_updated_at: datetime | None = None
    poll_interval_decrease_allowed_at: datetime | None = None


def _first_error_message(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid credentials"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg") or "Invalid credentials"
    return f"{location}: {message}" if location else message


def mask_api_key(api_key: str) -> str:
    trimmed = api_key.strip()
    if len(trimmed) <= 6:
        return "******"
    return f"{trimmed[:4]}****{trimmed[-2:]}"


def load_weather_station_credentials(raw: Any) -> WeatherStationCredentials | None:
    if not isinstance(raw, dict):
        return None
    try:
        return WeatherStationCredentials.model_validate({**raw, "kind": "weather_station"})
    except PydanticValidationError:
        return None


def merge_weather_station_credentials(
    raw: Any,
    existing: WeatherStationCredentials | None,
    now: datetime,
) -> WeatherStationCredentials:
    """Apply submitted credential fields on top of the stored ones.

    The poll interval may only be lowered once per cooldown window, measured
    from the last time it was lowered. Raising it or setting it for the first
    time is always allowed.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError("credentials must be an object")
    try:
        requested = WeatherStationCredentialsInput.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(_first_error_message(exc)) from exc

    current = existing or WeatherStationCredentials()
    lowered_at = current.poll_interval_lowered_at
    updated_at = current.poll_interval_updated_at
    interval = current.poll_interval_minutes

    if requested.poll_interval_minutes is not None:
        if existing is not None and requested.poll_interval_minutes < current.poll_interval_minutes:
            if lowered_at is not None and now - lowered_at < POLL_INTERVAL_COOLDOWN:
                raise ValidationError("Poll interval can only be reduced once every 6 hours.")
            lowered_at = now
        interval = requested.poll_interval_minutes
        updated_at = now
    elif updated_at is None:
        updated_at = now

    return WeatherStationCredentials(
        api_key=requested.api_key or current.api_key,
        poll_interval_minutes=interval,
        poll_interval_updated_at=updated_at,
        poll_interval_lowered_at=lowered_at,
    )


def summarize_weather_station_credentials(credentials: WeatherStationCredentials | None) -> CredentialSummary:
    if credentials is None:
        return CredentialSummary(poll_interval_minutes=DEFAULT_POLL_INTERVAL_MINUTES)
    api_key = (credentials.api_key or "").strip()
    allowed_at = None
    if credentials.poll_interval_lowered_at is not None:
        allowed_at = credentials.poll_interval_lowered_at + POLL_INTERVAL_COOLDOWN
    return CredentialSummary(
        has_api_key=bool(api_key),
        api_key_preview=mask_api_key(api_key) if api_key else None,
        poll_interval_minutes=credentials.poll_interval_minutes,
        poll_interval_updated_at=credentials.poll_interval_updated_at,
        poll_interval_decrease_allowed_at=allowed_at,
    )


def load_opaque_credentials(raw: Any) -> OpaqueCredentials | None:
    if not isinstance(raw, dict):
        return None
    if raw.get("kind") == "opaque" and isinstance(raw.get("data"), dict):
        return OpaqueCredentials(data=raw["data"])
    return OpaqueCredentials(data=raw)


def merge_opaque_credentials(raw: Any, existing: OpaqueCredentials | None) -> OpaqueCredentials | None:
    if isinstance(raw, dict):
        return OpaqueCredentials(data=raw)
    return existing
