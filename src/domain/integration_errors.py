from __future__ import annotations

from typing import Any


class IntegrationError(Exception):
    """Base class for caller-facing integration failures. Never dead-lettered."""

    code = "IntegrationError"
    http_status = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)


class ValidationError(IntegrationError):
    code = "ValidationError"
    http_status = 400


class WebhookSecretNotConfigured(ValidationError):
    """Fail-closed signal: a provider has no shared secret outside test mode."""

    http_status = 503


class Unauthorized(IntegrationError):
    code = "Unauthorized"
    http_status = 401


class ProviderDisabled(IntegrationError):
    code = "ProviderDisabled"
    http_status = 403


class ProviderRemoved(IntegrationError):
    code = "ProviderRemoved"
    http_status = 410


class NotFound(IntegrationError):
    code = "NotFound"
    http_status = 404


class PoolNotFound(NotFound):
    def __init__(self, pool_id: str) -> None:
        super().__init__(f"Pool {pool_id} not found")


class PoolForbidden(IntegrationError):
    code = "Forbidden"
    http_status = 403

    def __init__(self, pool_id: str) -> None:
        super().__init__(f"Access to pool {pool_id} is not allowed")


def integration_error_http_status(exc: IntegrationError) -> int:
    return exc.http_status


def integration_error_detail(exc: IntegrationError, **context: Any) -> dict[str, Any]:
    detail: dict[str, Any] = {"error": exc.code, "message": str(exc)}
    detail.update({k: v for k, v in context.items() if v is not None})
    return detail
