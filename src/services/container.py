from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from fastapi import Request

from src.config import Settings
from src.providers.registry import AdapterRegistry, build_adapter_registry
from src.services.common import Clock, ProviderPolicy, build_provider_policy, utc_now
from src.services.dead_letter import DeadLetterQueue
from src.services.device_registry import DeviceRegistry
from src.services.ingestion import WebhookIngestionEngine
from src.services.integration_registry import IntegrationRegistry
from src.services.pools import PoolAccess


@dataclass
class IntegrationServices:
    db: Any
    adapters: AdapterRegistry
    policy: ProviderPolicy
    integrations: IntegrationRegistry
    devices: DeviceRegistry
    dead_letter: DeadLetterQueue
    ingestion: WebhookIngestionEngine


def build_integration_services(
    db: Any,
    settings: Settings,
    *,
    adapters: AdapterRegistry | None = None,
    clock: Clock = utc_now,
) -> IntegrationServices:
    adapters = adapters or build_adapter_registry(settings)
    policy = build_provider_policy(settings)
    integrations = IntegrationRegistry(db, adapters, policy, clock=clock)
    dead_letter = DeadLetterQueue(
        db,
        clock=clock,
        claim_timeout=timedelta(seconds=settings.integration_retry_claim_timeout_seconds),
    )
    return IntegrationServices(
        db=db,
        adapters=adapters,
        policy=policy,
        integrations=integrations,
        devices=DeviceRegistry(db, adapters, policy, integrations, PoolAccess(db), clock=clock),
        dead_letter=dead_letter,
        ingestion=WebhookIngestionEngine(
            db,
            adapters,
            policy,
            dead_letter,
            clock=clock,
            provider_timeout_seconds=settings.integration_provider_timeout_seconds,
        ),
    )


def get_integration_services(request: Request) -> IntegrationServices:
    return request.app.state.integration_services
