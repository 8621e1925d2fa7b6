"""
Main FastAPI application for secure_credentials
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError
from sqlalchemy.exc import OperationalError

from secure_credentials import metrics
from secure_credentials.core.config import settings
from secure_credentials.core.database import check_database, dispose_db, init_db
from secure_credentials.core.errors import ErrorCategory, StoreUnavailableError
from secure_credentials.core.redis_client import redis_client
from secure_credentials.middleware import HTTPMetricsMiddleware, RequestIDMiddleware

# Import routers
from secure_credentials.api.v1.endpoints import auth, devices, challenges

logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.VERSION} ({settings.ENVIRONMENT})")
    metrics.app_info.info({"version": settings.VERSION, "environment": settings.ENVIRONMENT})

    # Initialize database (in production, use migrations instead)
    if settings.ENVIRONMENT == "development":
        init_db()

    yield

    logger.info("Shutting down...")
    redis_client.close()
    dispose_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Secure Credentials - multi-device two-factor authentication",
    lifespan=lifespan
)

app.add_middleware(HTTPMetricsMiddleware)
app.add_middleware(RequestIDMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOWED_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


def _infrastructure_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "success": False,
            "error": StoreUnavailableError.code,
            "error_type": ErrorCategory.INFRASTRUCTURE.value,
            "message": "Service temporarily unavailable. Please try again.",
        }
    )


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.error(f"Credential store unavailable on {request.method} {request.url.path}: {exc.detail}")
    return _infrastructure_response()


@app.exception_handler(OperationalError)
async def database_error_handler(request: Request, exc: OperationalError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
    return _infrastructure_response()


@app.exception_handler(RedisError)
async def redis_error_handler(request: Request, exc: RedisError):
    logger.error(f"Redis error on {request.method} {request.url.path}: {exc}")
    return _infrastructure_response()


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error": "validation_error",
            "error_type": ErrorCategory.VALIDATION.value,
            "message": f"{field}: {first.get('msg', 'invalid value')}" if field else "Invalid request",
        }
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    try:
        redis_status = "healthy" if redis_client.ping() else "unhealthy"
    except RedisError:
        redis_status = "unhealthy"

    database_status = "healthy" if check_database() else "unhealthy"
    healthy = redis_status == "healthy" and database_status == "healthy"

    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.VERSION,
        "checks": {
            "database": database_status,
            "redis": redis_status,
        }
    }


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.APP_NAME,
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "docs_url": "/docs",
    }


@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus exposition"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Include API routers
app.include_router(auth.router, prefix=f"{settings.API_V1_PREFIX}/auth", tags=["authentication"])
app.include_router(devices.router, prefix=f"{settings.API_V1_PREFIX}/devices", tags=["devices"])
app.include_router(challenges.router, prefix=f"{settings.API_V1_PREFIX}/challenges", tags=["challenges"])
