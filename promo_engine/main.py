import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from promo_engine.config import settings
from promo_engine.database import init_db, async_session_factory
from promo_engine.api.v1.router import api_router
from promo_engine.jobs.scheduler import start_scheduler, shutdown_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create tables that do not exist yet
    - Start background scheduler (promotion status sync)
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    if settings.SCHEDULER_ENABLED:
        shutdown_scheduler()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Cart Promotions", "description": "Cart preview calculation and coupon validation"},
    {"name": "Promotions", "description": "Promotion management and usage recording"},
    {"name": "Coupons", "description": "Coupon codes linked to promotions"},
    {"name": "Health", "description": "Service health"},
]

API_DESCRIPTION = """
## Storefront Promotion Engine

Evaluates which promotions apply to a shopping cart and computes the
discount, shipping, tax and total.

### Authentication

Storefront routes accept anonymous carts; a customer bearer token enables
segment, first-order and per-customer checks. Back-office routes require a
token with the `ADMIN` role claim.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Bad Request - Duplicate code |
| 401 | Unauthorized - Missing/invalid token |
| 403 | Forbidden - Admin role required |
| 404 | Not Found - Resource doesn't exist |
| 409 | Conflict - Usage limit reached |
| 422 | Unprocessable Entity - Validation failed |
| 500 | Internal Server Error |
"""

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
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
    """Uncaught errors become a JSON body instead of a bare 500."""
    if isinstance(exc, HTTPException):
        status_code = exc.status_code
        error_message = exc.detail
    else:
        status_code = 500
        error_message = str(exc) if settings.DEBUG else "Internal server error"
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    error_detail = {
        "error": error_message,
        "type": type(exc).__name__,
        "path": str(request.url.path),
        "method": request.method,
    }

    response = JSONResponse(
        status_code=status_code,
        content=error_detail
    )

    # Error responses bypass CORSMiddleware, so echo allowed origins here
    origin = request.headers.get("origin", "")
    if origin and (origin in settings.cors_origins_list or "*" in settings.cors_origins_list):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"

    return response


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
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
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
