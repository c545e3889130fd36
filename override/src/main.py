"""
FastAPI application entry point for the manual override API.

The lifespan loads ControllerSettings (the same environment the controller
daemon reads), connects to the Redis document store, and stores the
components on app.state for the dependency providers in deps.py. Domain
errors are mapped to HTTP status codes by exception handlers.

Serve with any ASGI server, e.g. ``uvicorn override.src.main:app``.

CHANGELOG:
- 2026-10-11: Register readings router and save-power endpoint (STORY-014)
- 2026-10-10: Initial creation (STORY-013)
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from controller.src.config import ControllerSettings
from controller.src.exceptions import (
    DuplicateLoadError,
    LoadNotFoundError,
    PolicyWriteFailure,
)
from controller.src.notifier import Notifier
from controller.src.policy import PolicyStore
from controller.src.sink import DeviceCommandSink
from controller.src.store import DocumentStore, create_redis
from controller.src.telemetry import TelemetrySource
from override.src.health import router as health_router
from override.src.loads import router as loads_router
from override.src.policy import router as policy_router
from override.src.readings import router as readings_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build store-backed components, close on exit.

    Startup:
        - Loads and validates ControllerSettings.
        - Creates the Redis document store and the policy, sink, notifier
          and telemetry components on app.state.

    Shutdown:
        - Closes the Redis connection pool.
    """
    settings = ControllerSettings()
    store = DocumentStore(
        create_redis(settings.redis_url),
        key_prefix=settings.key_prefix,
        channel_prefix=settings.channel_prefix,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.policy_store = PolicyStore(store, path=settings.policy_path)
    app.state.sink = DeviceCommandSink(
        store,
        rooms_path=settings.rooms_path,
        device_logs_path=settings.device_logs_path,
    )
    app.state.notifier = Notifier(store, channel=settings.notification_channel)
    app.state.telemetry = TelemetrySource(
        store,
        path=settings.telemetry_path,
        default_capacity_wh=settings.default_battery_capacity_wh,
    )

    logger.info("Settings validated, override API ready")
    yield
    logger.info("Override API shutting down")
    await store.close()


app = FastAPI(
    title="Load Shedding Override API",
    description="Manual override of the automatic load-shedding policy.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(DuplicateLoadError)
async def _duplicate_load(request: Request, exc: DuplicateLoadError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(LoadNotFoundError)
async def _load_not_found(request: Request, exc: LoadNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(PolicyWriteFailure)
async def _policy_write_failure(request: Request, exc: PolicyWriteFailure) -> JSONResponse:
    logger.error("Policy write failed: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "Policy store unavailable."})


@app.exception_handler(RedisError)
async def _store_unavailable(request: Request, exc: RedisError) -> JSONResponse:
    logger.error("Document store error: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "Document store unavailable."})


app.include_router(health_router)
app.include_router(policy_router)
app.include_router(loads_router)
app.include_router(readings_router)


@app.get("/")
async def root() -> dict:
    """Root health check endpoint.

    Returns:
        dict: JSON object with application status.
    """
    return {"status": "ok"}
