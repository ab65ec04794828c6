"""
Laundry Orders Service
Order state synchronization across denormalized copies and real-time
notification fan-out.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from laundry.api.routes import router as orders_router, notifications_router, channels_router
from laundry.core_settings import get_settings
from laundry.domain.errors import LaundryError, PartialSyncFailure, StoreError
from laundry.infrastructure.db import get_store
from laundry.infrastructure.pubsub import get_publisher

SERVICE_NAME = "laundry-service"
SERVICE_DESCRIPTION = "Laundry order synchronization and notification service"

settings = get_settings()
SERVICE_VERSION = settings.SERVICE_VERSION

setup_logging(service_name=SERVICE_NAME, level=settings.LOG_LEVEL)

logger = get_logger(__name__)


def _resolve(dependency):
    """Call a dependency provider, honouring ``app.dependency_overrides``."""
    return app.dependency_overrides.get(dependency, dependency)()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")
    try:
        _resolve(get_store).ensure_indexes()
        logger.info("Entity store indexes ensured")
    except StoreError as e:
        logger.error(f"Failed to prepare entity store: {e.message}")
        raise
    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")


app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(LaundryError)
async def laundry_error_handler(request: Request, exc: LaundryError) -> JSONResponse:
    body = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, PartialSyncFailure):
        body["failures"] = [
            {"collection": f.collection, "document_id": f.document_id, "reason": f.reason} for f in exc.failures
        ]
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}", extra={"extra_fields": {"path": request.url.path}})
    return JSONResponse(status_code=exc.status_code, content=body)


health_service = ServiceHealth(
    SERVICE_NAME,
    SERVICE_VERSION,
    datastore_ping=lambda: _resolve(get_store).ping(),
    pubsub_ping=lambda: _resolve(get_publisher).ping(),
    required_env=("MONGO_URL", "REDIS_URL") if settings.STORE_BACKEND == "mongo" else (),
)
app.include_router(health_service.create_health_router())

app.include_router(orders_router)
app.include_router(notifications_router)
app.include_router(channels_router)


@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs",
    }


if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
