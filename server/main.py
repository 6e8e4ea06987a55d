"""
FastAPI backend serving the chapter collection.

Reads go through a Redis-backed response cache and every API path is rate
limited; both degrade gracefully when Redis is unavailable.
"""

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.exceptions import BackendUnavailable
from core.health import get_health_status, set_startup_time
from core.logging import configure_logging, get_logger
from middleware.auth import AdminAuthError, admin_auth_error_handler
from middleware.cache import ResponseCacheMiddleware
from middleware.rate_limit import RateLimitExceeded, RateLimitMiddleware, rate_limit_exceeded_handler
from routers import admin, chapters

# Initialize settings and logging
settings = container.settings()
configure_logging(settings)
logger = get_logger(__name__)

# Suppress noisy loggers
logging.getLogger("uvicorn").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("uvicorn.error").setLevel(logging.WARNING)
logging.getLogger("watchfiles").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    logger.info("Starting chapter service")
    set_startup_time()

    # Budgets are validated here so a bad RATE_LIMIT_* value stops startup
    container.rate_limiters()

    await container.database().startup()

    backend = container.backend()
    try:
        await backend.connect()
    except BackendUnavailable as e:
        logger.warning("Redis unavailable at startup, caching disabled and rate limiting degraded",
                       error=str(e))

    logger.info("Services started successfully", redis_state=backend.state.value)
    yield

    # Shutdown
    await backend.disconnect()
    await container.database().shutdown()
    logger.info("Services shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Chapter Service",
    version="1.0.0",
    description="Chapter collection API with response caching and rate limiting",
    lifespan=lifespan,
)


class CatchAllExceptionsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(method=request.method, path=request.url.path)
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled exception: {type(e).__name__}: {str(e)}", exc_info=True)
            content = {"success": False, "message": "Internal server error"}
            if container.settings().is_development:
                content["error"] = f"{type(e).__name__}: {str(e)}"
            return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


# Innermost first: the rate limiter runs before the cache lookup
app.add_middleware(ResponseCacheMiddleware)
app.add_middleware(RateLimitMiddleware)

# Add exception handler middleware BEFORE CORS to catch all errors
app.add_middleware(CatchAllExceptionsMiddleware)

logger.info("Configuring CORS middleware",
            origins_count=len(settings.cors_origins),
            origins=settings.cors_origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Cache-Status", "X-RateLimit-Limit", "X-RateLimit-Remaining",
                    "X-RateLimit-Reset", "Retry-After"],
)

app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(AdminAuthError, admin_auth_error_handler)


@app.exception_handler(StarletteHTTPException)
async def not_found_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found":
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "Route not found", "path": request.url.path},
        )
    return await http_exception_handler(request, exc)


# Include routers
app.include_router(chapters.router)
app.include_router(admin.router)


@app.get("/health")
@app.get("/api/health")
async def health_check():
    """Liveness plus database and Redis state. Never rate limited."""
    return await get_health_status(container.database(), container.backend(), container.settings())


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting chapter service",
                host=settings.host, port=settings.port, debug=settings.debug)
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["."] if settings.debug else None,
        reload_excludes=["*.pyc", "__pycache__", "*.log", "*.db"] if settings.debug else None,
        workers=1 if settings.debug else settings.workers
    )
