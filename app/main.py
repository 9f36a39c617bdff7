"""
LAOS Store Webhooks - Main FastAPI Application
"""
from fastapi import FastAPI
from starlette.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.db.database import AsyncSessionLocal, engine, Base
from app.db import models  # noqa: F401  registers every table on Base.metadata
from app.domain.services.stripe_webhook.pipeline import build_webhook_pipeline

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


_OPENAPI_TAGS = [
    {"name": "webhooks", "description": "Stripe payment event ingestion."},
    {
        "name": "webhook-admin",
        "description": "Operator views: processing metrics and dead-lettered events.",
    },
    {"name": "Health", "description": "Liveness and readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Stripe webhook ingestion for the LAOS band store.",
    openapi_tags=_OPENAPI_TAGS,
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Create tables and build the webhook pipeline"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    app.state.webhook_pipeline = build_webhook_pipeline(settings, AsyncSessionLocal)


@app.on_event("shutdown")
async def shutdown() -> None:
    """Cleanup on shutdown"""
    logger.info("Shutting down application")
    from app.core.redis_client import close_redis
    await close_redis()
    # Release pooled connections
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="Liveness probe",
    description=(
        "Lightweight check that the process is up and responding. "
        "Does not check dependencies, so a DB or Redis outage never triggers a restart."
    ),
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    """Liveness probe"""
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness probe",
    description=(
        "Checks the database, and Redis when it backs webhook coordination. "
        "Returns status=healthy when everything is reachable, otherwise status=degraded."
    ),
    responses={
        200: {
            "description": "All dependencies reachable",
            "content": {"application/json": {"example": {"status": "healthy", "db": "ok"}}},
        },
        503: {
            "description": "At least one dependency is unavailable",
            "content": {
                "application/json": {
                    "example": {"status": "degraded", "db": "error: db_unavailable"}
                }
            },
        },
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    """Readiness probe"""
    from app.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
