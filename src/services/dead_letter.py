from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from src.domain.integration_errors import IntegrationError
from src.models.integrations import IngestionFailureResponse, RetrySweepResponse
from src.observability import incr_metric, log_event
from src.providers.base import SIGNATURE_HEADER
from src.services.common import Clock, parse_ts, utc_now


BACKOFF_BASE_SECONDS = 30
BACKOFF_MAX_SECONDS = 900
LAST_ERROR_MAX_CHARS = 1000
DEFAULT_CLAIM_TIMEOUT_SECONDS = 600

FAILURE_COLUMNS = (
    "failure_id, provider, headers, payload, status, attempts, last_error, next_attempt_at, "
    "claimed_at, resolved_at, created_at, updated_at"
)

FailureProcessor = Callable[[str, dict[str, Any], dict[str, Any]], Awaitable[Any]]


def backoff_seconds(attempt: int) -> int:
    return min(BACKOFF_MAX_SECONDS, BACKOFF_BASE_SECONDS * 2 ** max(0, attempt - 1))


def truncate_error(error: BaseException | str) -> str:
    text = str(error)
    if not text and isinstance(error, BaseException):
        text = type(error).__name__
    return text[:LAST_ERROR_MAX_CHARS]


def redact_headers(headers: dict[str, Any] | None) -> dict[str, Any]:
    if not headers:
        return {}
    return {
        key: "[redacted]" if str(key).lower() == SIGNATURE_HEADER else value
        for key, value in headers.items()
    }


class DeadLetterQueue:
    """Persistent queue of webhook deliveries that failed after verification.

    Rows move pending -> in_flight -> (resolved | pending | dead). The
    in_flight claim is taken with a conditional update so two sweepers never
    process the same row; claims older than ``claim_timeout`` are released.
    """

    def __init__(
        self,
        db: Any,
        clock: Clock = utc_now,
        claim_timeout: timedelta = timedelta(seconds=DEFAULT_CLAIM_TIMEOUT_SECONDS),
    ) -> None:
        self._db = db
        self._clock = clock
        self._claim_timeout = claim_timeout

    def enqueue(
        self,
        *,
        provider: str,
        headers: dict[str, Any],
        payload: dict[str, Any] | None,
        error: BaseException | str,
    ) -> Any:
        now = self._clock()
        result = (
            self._db.table("integration_ingestion_failures")
            .insert(
                {
                    "provider": provider,
                    "headers": headers,
                    "payload": payload or {},
                    "status": "pending",
                    "attempts": 1,
                    "last_error": truncate_error(error),
                    "next_attempt_at": (now + timedelta(seconds=backoff_seconds(1))).isoformat(),
                    "created_at": now.isoformat(),
                    "updated_at": now.isoformat(),
                }
            )
            .execute()
        )
        if not result.data:
            raise RuntimeError("Failed to persist ingestion failure")
        failure_id = result.data[0]["failure_id"]
        incr_metric("ingestion.failures_enqueued", provider=provider)
        log_event(
            "ingestion_failure_enqueued",
            level=logging.WARNING,
            provider=provider,
            failure_id=failure_id,
            error=truncate_error(error),
        )
        return failure_id

    def release_stale_claims(self) -> int:
        cutoff = self._clock() - self._claim_timeout
        result = (
            self._db.table("integration_ingestion_failures")
            .update({"status": "pending", "claimed_at": None, "updated_at": self._clock().isoformat()})
            .eq("status", "in_flight")
            .lt("claimed_at", cutoff.isoformat())
            .execute()
        )
        released = len(result.data or [])
        if released:
            incr_metric("ingestion.stale_claims_released", value=released)
            log_event("ingestion_stale_claims_released", level=logging.WARNING, released=released)
        return released

    def claim(self, row: dict[str, Any]) -> bool:
        """Move a pending row to in_flight if nobody else has touched it since it was read."""
        result = (
            self._db.table("integration_ingestion_failures")
            .update({"status": "in_flight", "claimed_at": self._clock().isoformat()})
            .eq("failure_id", row["failure_id"])
            .eq("status", "pending")
            .eq("attempts", row.get("attempts") or 0)
            .execute()
        )
        return bool(result.data)

    def _finish(self, failure_id: Any, values: dict[str, Any]) -> None:
        values = {**values, "claimed_at": None, "updated_at": self._clock().isoformat()}
        (
            self._db.table("integration_ingestion_failures")
            .update(values)
            .eq("failure_id", failure_id)
            .eq("status", "in_flight")
            .execute()
        )

    def mark_resolved(self, failure_id: Any, attempts: int) -> None:
        self._finish(
            failure_id,
            {
                "status": "resolved",
                "attempts": attempts,
                "resolved_at": self._clock().isoformat(),
                "last_error": None,
            },
        )

    def mark_pending(self, failure_id: Any, attempts: int, error: BaseException | str) -> None:
        next_attempt_at = self._clock() + timedelta(seconds=backoff_seconds(attempts))
        self._finish(
            failure_id,
            {
                "status": "pending",
                "attempts": attempts,
                "last_error": truncate_error(error),
                "next_attempt_at": next_attempt_at.isoformat(),
            },
        )

    def mark_dead(self, failure_id: Any, attempts: int, error: BaseException | str) -> None:
        self._finish(
            failure_id,
            {"status": "dead", "attempts": attempts, "last_error": truncate_error(error)},
        )

    async def retry_pending(
        self,
        processor: FailureProcessor,
        *,
        limit: int = 50,
        max_attempts: int = 5,
    ) -> RetrySweepResponse:
        self.release_stale_claims()
        now = self._clock()
        result = (
            self._db.table("integration_ingestion_failures")
            .select(FAILURE_COLUMNS)
            .eq("status", "pending")
            .order("next_attempt_at")
            .limit(limit)
            .execute()
        )
        summary = RetrySweepResponse()
        for row in result.data or []:
            due_at = parse_ts(row.get("next_attempt_at"))
            if due_at is not None and due_at > now:
                continue
            if not self.claim(row):
                incr_metric("ingestion.retry_claim_lost")
                continue

            failure_id = row["failure_id"]
            provider = row["provider"]
            attempts = int(row.get("attempts") or 0)
            next_attempts = attempts + 1
            summary.processed += 1
            try:
                await processor(provider, row.get("headers") or {}, row.get("payload") or {})
            except IntegrationError as exc:
                # Caller-facing errors are permanent.
                self._bury(summary, failure_id, provider, next_attempts, exc)
                continue
            except Exception as exc:
                if next_attempts >= max_attempts:
                    self._bury(summary, failure_id, provider, next_attempts, exc)
                else:
                    self.mark_pending(failure_id, next_attempts, exc)
                    summary.pending += 1
                    incr_metric("ingestion.retry_rescheduled", provider=provider)
                    log_event(
                        "ingestion_failure_rescheduled",
                        level=logging.WARNING,
                        provider=provider,
                        failure_id=failure_id,
                        attempts=next_attempts,
                        error=truncate_error(exc),
                    )
                continue

            self.mark_resolved(failure_id, next_attempts)
            summary.resolved += 1
            incr_metric("ingestion.retry_resolved", provider=provider)
            log_event("ingestion_failure_resolved", provider=provider, failure_id=failure_id, attempts=next_attempts)

        log_event("ingestion_retry_sweep_completed", **summary.model_dump())
        return summary

    def _bury(
        self,
        summary: RetrySweepResponse,
        failure_id: Any,
        provider: str,
        attempts: int,
        exc: Exception,
    ) -> None:
        self.mark_dead(failure_id, attempts, exc)
        summary.dead += 1
        incr_metric("ingestion.retry_dead", provider=provider, reason=type(exc).__name__)
        log_event(
            "ingestion_failure_dead",
            level=logging.ERROR,
            provider=provider,
            failure_id=failure_id,
            attempts=attempts,
            error=truncate_error(exc),
        )

    def list_failures(self, status: str | None = None, limit: int = 100) -> list[IngestionFailureResponse]:
        query = self._db.table("integration_ingestion_failures").select(FAILURE_COLUMNS)
        if status:
            query = query.eq("status", status)
        result = query.order("created_at", desc=True).limit(limit).execute()
        return [
            IngestionFailureResponse(
                failure_id=row["failure_id"],
                provider=row["provider"],
                headers=redact_headers(row.get("headers")),
                payload=row.get("payload"),
                status=row["status"],
                attempts=int(row.get("attempts") or 0),
                last_error=row.get("last_error"),
                next_attempt_at=row.get("next_attempt_at"),
                resolved_at=row.get("resolved_at"),
                created_at=row.get("created_at"),
            )
            for row in result.data or []
        ]
