from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from src.config import settings
from src.db import supabase
from src.observability import log_event
from src.routers import (
    integrations,
    internal_ingestion,
    sensor_readings,
    webhooks,
)
from src.services.container import build_integration_services
from src.services.retry_worker import IngestionRetryWorker


@asynccontextmanager
async def lifespan(app: FastAPI):
    worker = None
    if settings.integration_retry_worker_enabled:
        worker = IngestionRetryWorker(
            app.state.integration_services.ingestion,
            tick_seconds=settings.integration_retry_tick_seconds,
            batch_size=settings.integration_retry_batch_size,
            max_attempts=settings.integration_retry_max_attempts,
        )
        worker.start()
    app.state.retry_worker = worker
    log_event("app_started", app_env=settings.app_env, retry_worker_enabled=worker is not None)
    try:
        yield
    finally:
        if worker is not None:
            await worker.stop()


app = FastAPI(title="H2Own Integrations", version="0.1.0", lifespan=lifespan)
app.state.integration_services = build_integration_services(supabase, settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid4())
    )
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

app.include_router(integrations.router)
app.include_router(webhooks.router)
app.include_router(sensor_readings.router)
app.include_router(internal_ingestion.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": "h2own-integrations"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
