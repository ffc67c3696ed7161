from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.v1.router import api_router
from app.database import init_db, async_session_factory
from app.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create tables
    - Start the bookkeeping retry scheduler
    """
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    if settings.BOOKKEEPING_RETRY_ENABLED:
        start_scheduler()

    yield

    # Shutdown
    shutdown_scheduler()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Deliveries", "description": "Scheduling, dispatch, outcomes and cancellation of deliveries"},
    {"name": "Carriers", "description": "Carrier directory, performance metrics and running account ledger"},
    {"name": "Sales", "description": "Sale fulfillment status derived from delivered quantities"},
]

FULL_API_DESCRIPTION = """
## Delivery Fulfillment API

Schedules deliveries against sales, records their outcomes and keeps
carrier accounts, distribution expenses and inventory units in step.

### Actor

Mutating endpoints require an `X-Actor-Id` header. It is stamped on
deliveries, ledger entries, expenses and inventory movements.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Bad Request - business rule or validation failed |
| 404 | Not Found - delivery, sale or carrier doesn't exist |
| 409 | Conflict - operation not allowed in the delivery's current status |
| 422 | Unprocessable Entity - malformed request body |
| 500 | Internal Server Error |
"""

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log unexpected errors and return a JSON 500. Traceback only in DEBUG."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")

    error_detail = {
        "error": str(exc),
        "type": type(exc).__name__,
        "path": str(request.url.path),
        "method": request.method,
    }
    if settings.DEBUG:
        error_detail["traceback"] = traceback.format_exc()

    response = JSONResponse(status_code=500, content=error_detail)

    # Error responses bypass CORSMiddleware
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins_list or "*" in settings.cors_origins_list:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"

    return response


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    health_status["jobs"] = get_job_status()

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
