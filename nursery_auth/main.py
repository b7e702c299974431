"""
FastAPI Application - Nursery Auth API
Phone/SMS login, dual-role resolution, token rotation and kiosk sessions
"""

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from nursery_auth.config import settings
from nursery_auth.core.database import engine
from nursery_auth.core.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager for startup and shutdown events"""
    logger.info(
        "startup",
        project=settings.PROJECT_NAME,
        environment=settings.ENVIRONMENT,
        sms_enabled=settings.SMS_ENABLED,
    )
    yield
    await engine.dispose()
    logger.info("shutdown", project=settings.PROJECT_NAME)


# Create FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Authentication and session lifecycle for the nursery app",
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Tag every log line of a request with its request ID."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    set_request_context(request_id)
    try:
        response = await call_next(request)
    finally:
        clear_request_context()
    response.headers["X-Request-ID"] = request_id
    return response


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint - API information"""
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint"""
    return {"status": "healthy"}


# Import and include routers
from nursery_auth.api.v1 import router as api_v1_router  # noqa: E402

app.include_router(api_v1_router, prefix=settings.API_V1_STR)
