from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from src.config import Settings, parse_provider_list
from src.domain.integration_errors import ProviderDisabled, ProviderRemoved


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class ProviderPolicy:
    """Provider gating shared by every entry point. Removed providers never come back."""

    def __init__(self, *, disabled: set[str] | None = None, removed: set[str] | None = None) -> None:
        self._disabled = {p.lower() for p in disabled or set()}
        self._removed = {p.lower() for p in removed or set()}

    def ensure_enabled(self, provider: str) -> None:
        key = provider.strip().lower()
        if key in self._removed:
            raise ProviderRemoved(f"Provider {provider} has been removed")
        if key in self._disabled:
            raise ProviderDisabled(f"Provider {provider} is disabled")


def build_provider_policy(settings: Settings) -> ProviderPolicy:
    return ProviderPolicy(
        disabled=parse_provider_list(settings.disabled_integration_providers),
        removed=parse_provider_list(settings.removed_integration_providers),
    )
