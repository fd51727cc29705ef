from __future__ import annotations

from typing import Any

from src.domain.integration_errors import NotFound
from src.models.integrations import IntegrationResponse
from src.observability import incr_metric, log_event
from src.providers.base import ConnectResult, DefaultAdapter, connect_result_from_payload
from src.providers.registry import AdapterRegistry
from src.services.common import Clock, ProviderPolicy, utc_now


INTEGRATION_COLUMNS = (
    "integration_id, user_id, provider, status, scopes, external_account_id, credentials, created_at, updated_at"
)


class IntegrationRegistry:
    """One integration row per (user, provider); credentials never leave this class unmasked."""

    def __init__(
        self,
        db: Any,
        adapters: AdapterRegistry,
        policy: ProviderPolicy,
        clock: Clock = utc_now,
    ) -> None:
        self._db = db
        self._adapters = adapters
        self._policy = policy
        self._clock = clock

    def _find(self, user_id: str, provider: str) -> dict[str, Any] | None:
        result = (
            self._db.table("integrations")
            .select(INTEGRATION_COLUMNS)
            .eq("user_id", user_id)
            .eq("provider", provider)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_owned_integration(self, user_id: str, integration_id: str) -> dict[str, Any]:
        result = (
            self._db.table("integrations")
            .select(INTEGRATION_COLUMNS)
            .eq("integration_id", integration_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            raise NotFound("Integration not found")
        return result.data[0]

    def _normalize_payload(
        self,
        adapter: DefaultAdapter,
        payload: dict[str, Any] | None,
        existing: dict[str, Any] | None,
    ) -> dict[str, Any]:
        normalized = dict(payload or {})
        normalized["credentials"] = adapter.merge_credentials(
            normalized.get("credentials"),
            existing.get("credentials") if existing else None,
            self._clock(),
        )
        return normalized

    def _upsert(self, user_id: str, provider: str, connected: ConnectResult) -> dict[str, Any]:
        result = (
            self._db.table("integrations")
            .upsert(
                {
                    "user_id": user_id,
                    "provider": provider,
                    "status": "connected",
                    "scopes": connected.scopes,
                    "external_account_id": connected.external_account_id,
                    "credentials": connected.credentials,
                    "updated_at": self._clock().isoformat(),
                },
                on_conflict="user_id,provider",
            )
            .execute()
        )
        return result.data[0]

    def to_public(self, row: dict[str, Any]) -> IntegrationResponse:
        adapter = self._adapters.get(row["provider"])
        scopes = row.get("scopes")
        summary = adapter.summarize_credentials(row.get("credentials"))
        return IntegrationResponse(
            integration_id=str(row["integration_id"]),
            user_id=str(row["user_id"]),
            provider=row["provider"],
            status=row.get("status") or "connected",
            scopes=[s for s in scopes if isinstance(s, str)] if isinstance(scopes, list) else None,
            external_account_id=row.get("external_account_id"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            **summary.model_dump(),
        )

    async def list_integrations(self, user_id: str) -> list[IntegrationResponse]:
        result = (
            self._db.table("integrations")
            .select(INTEGRATION_COLUMNS)
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [self.to_public(row) for row in result.data or []]

    async def connect(self, user_id: str, provider: str, payload: dict[str, Any] | None = None) -> IntegrationResponse:
        self._policy.ensure_enabled(provider)
        adapter = self._adapters.get(provider)
        existing = self._find(user_id, provider)
        normalized = self._normalize_payload(adapter, payload, existing)
        connected = await adapter.connect(user_id=user_id, payload=normalized)
        row = self._upsert(user_id, provider, connected)
        incr_metric("integrations.connected", provider=provider)
        log_event(
            "integration_connected",
            user_id=user_id,
            provider=provider,
            integration_id=row.get("integration_id"),
            reconnected=existing is not None,
        )
        return self.to_public(row)

    async def callback(self, user_id: str, provider: str, payload: dict[str, Any] | None = None) -> IntegrationResponse:
        self._policy.ensure_enabled(provider)
        adapter = self._adapters.get(provider)
        existing = self._find(user_id, provider)
        normalized = self._normalize_payload(adapter, payload, existing)
        returned = await adapter.callback(user_id=user_id, payload=normalized)
        submitted = connect_result_from_payload(normalized)
        merged = ConnectResult(
            external_account_id=returned.external_account_id or submitted.external_account_id,
            scopes=returned.scopes if returned.scopes is not None else submitted.scopes,
            credentials=returned.credentials if returned.credentials is not None else submitted.credentials,
        )
        row = self._upsert(user_id, provider, merged)
        incr_metric("integrations.callback_received", provider=provider)
        log_event(
            "integration_callback_received",
            user_id=user_id,
            provider=provider,
            integration_id=row.get("integration_id"),
        )
        return self.to_public(row)

    async def disconnect(self, user_id: str, integration_id: str) -> bool:
        result = (
            self._db.table("integrations")
            .delete()
            .eq("integration_id", integration_id)
            .eq("user_id", user_id)
            .execute()
        )
        deleted = bool(result.data)
        if deleted:
            incr_metric("integrations.disconnected")
            log_event("integration_disconnected", user_id=user_id, integration_id=integration_id)
        return deleted
