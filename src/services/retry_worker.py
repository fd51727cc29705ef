from __future__ import annotations

import asyncio
import logging

from src.models.integrations import RetrySweepResponse
from src.observability import incr_metric, log_event
from src.services.ingestion import WebhookIngestionEngine


class IngestionRetryWorker:
    """Background loop that sweeps the dead-letter queue on a fixed tick."""

    def __init__(
        self,
        engine: WebhookIngestionEngine,
        *,
        tick_seconds: float = 60,
        batch_size: int = 50,
        max_attempts: int = 5,
    ) -> None:
        self._engine = engine
        self.tick_seconds = tick_seconds
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self._task: asyncio.Task | None = None
        self._sweeping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        log_event("ingestion_retry_worker_started", tick_seconds=self.tick_seconds, batch_size=self.batch_size)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log_event("ingestion_retry_worker_stopped")

    async def run_once(self) -> RetrySweepResponse | None:
        """Run one sweep; returns None when a previous sweep is still in progress."""
        if self._sweeping:
            incr_metric("ingestion.retry_tick_skipped")
            return None
        self._sweeping = True
        try:
            result = await self._engine.retry_pending_ingestion_failures(
                limit=self.batch_size,
                max_attempts=self.max_attempts,
            )
        finally:
            self._sweeping = False
        log_event("ingestion_retry_tick", **result.model_dump())
        return result

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                incr_metric("ingestion.retry_tick_failed")
                log_event("ingestion_retry_tick_failed", level=logging.ERROR, error=str(exc))
            await asyncio.sleep(self.tick_seconds)
