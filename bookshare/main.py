"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application.

Key Concepts:
=============

1. Application Factory Pattern
   - create_app() function returns configured app
   - Easier to test (can create multiple instances)

2. Lifespan Events
   - startup: connect the search cache
   - shutdown: close it

3. Middleware Stack
   - slowapi: IP rate limits on the auth endpoints
   - CORS: Allow cross-origin requests from the frontend

4. Exception Handlers
   - Domain errors (bookshare.exceptions) → HTTP status codes
   - Every authentication failure renders the same uniform 401
   - Database and unexpected errors → 500 without internals
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from bookshare.config import get_settings
from bookshare.dependencies import CREDENTIALS_EXCEPTION_DETAIL
from bookshare.exceptions import (
    ConflictError,
    InactivePrincipalError,
    InvalidTokenError,
    NoEmailError,
    PrincipalNotFoundError,
    RateLimitedError,
    StaleTokenError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamThrottledError,
)
from bookshare.routers import auth_router, search_router
from bookshare.services.cache import close_redis_connection, get_cache_stats, get_redis_client
from bookshare.services.rate_limiter import limiter, rate_limit_exceeded_handler

# =============================================================================
# Logging Configuration
# =============================================================================
settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan Events
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Code before yield: Runs on startup
    Code after yield: Runs on shutdown
    """
    # ----- STARTUP -----
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"API version: {settings.api_version}")

    if get_redis_client():
        logger.info("Redis caching enabled for AI search")
    else:
        logger.warning("Redis unavailable - search caching disabled")

    if not settings.ai_search_enabled:
        logger.warning("GEMINI_API_KEY not set - AI search disabled")

    yield  # Application runs here

    # ----- SHUTDOWN -----
    logger.info(f"Shutting down {settings.app_name}...")
    close_redis_connection()


# =============================================================================
# Exception Handlers
# =============================================================================

UPSTREAM_STATUS = {
    UpstreamAuthError: status.HTTP_502_BAD_GATEWAY,
    UpstreamThrottledError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def credentials_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Invalid, expired, stale or orphaned credentials.

    All render identically so a caller cannot tell which check failed or
    whether the account exists.
    """
    logger.info(f"Authentication failed on {request.url.path}: {type(exc).__name__}")
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": CREDENTIALS_EXCEPTION_DETAIL},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def conflict_exception_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": exc.message, "field": exc.field},
    )


async def inactive_principal_exception_handler(
    request: Request,
    exc: InactivePrincipalError,
) -> JSONResponse:
    """Same 403 as password login for a deactivated account."""
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": exc.message},
    )


async def no_email_exception_handler(request: Request, exc: NoEmailError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.message},
    )


async def rate_limited_exception_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
    """429 with Retry-After, in the same shape as the slowapi handler."""
    retry_after = exc.retry_after if exc.retry_after is not None else 60
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "rate_limit_exceeded",
            "message": exc.message,
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


async def upstream_exception_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    status_code = UPSTREAM_STATUS.get(type(exc), status.HTTP_502_BAD_GATEWAY)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": exc.code},
    )


# =============================================================================
# Application Factory
# =============================================================================
def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.app_name,
        description="""
## Bookshare API

Backend for a book-sharing social app.

### Authentication
- Email/password registration and login
- Google and GitHub sign-in
- Short-lived access tokens plus single-use, rotating refresh tokens

### AI Search
Semantic search over recent posts, ranked by an LLM. Limited to 10
searches per minute per user.
        """,
        version=settings.api_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # -------------------------------------------------------------------------
    # Rate Limiting
    # -------------------------------------------------------------------------
    # Attach the limiter to the app state so it can be accessed by decorators
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # -------------------------------------------------------------------------
    # CORS Middleware
    # -------------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,  # Refresh token cookie
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Exception Handlers
    # -------------------------------------------------------------------------
    app.add_exception_handler(InvalidTokenError, credentials_exception_handler)
    app.add_exception_handler(StaleTokenError, credentials_exception_handler)
    app.add_exception_handler(PrincipalNotFoundError, credentials_exception_handler)
    app.add_exception_handler(ConflictError, conflict_exception_handler)
    app.add_exception_handler(InactivePrincipalError, inactive_principal_exception_handler)
    app.add_exception_handler(NoEmailError, no_email_exception_handler)
    app.add_exception_handler(RateLimitedError, rate_limited_exception_handler)
    app.add_exception_handler(UpstreamError, upstream_exception_handler)

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(
        request: Request,
        exc: SQLAlchemyError,
    ) -> JSONResponse:
        """
        Handle SQLAlchemy database errors.

        Logs the actual error for debugging while hiding details from users.
        """
        logger.error(f"Database error: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "detail": "A database error occurred. Please try again later."
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """
        Catch-all exception handler.

        In production, hide internal errors from users.
        In debug mode, show more details.
        """
        logger.error(f"Unhandled error: {exc}", exc_info=True)

        if settings.debug:
            return JSONResponse(
                status_code=500,
                content={"detail": str(exc)},
            )

        return JSONResponse(
            status_code=500,
            content={"detail": "An internal error occurred."},
        )

    # -------------------------------------------------------------------------
    # Register Routers
    # -------------------------------------------------------------------------
    # prefix="/api/v1" creates versioned URLs: /api/v1/auth, /api/v1/search
    api_prefix = f"/api/{settings.api_version}"

    app.include_router(auth_router, prefix=api_prefix)
    app.include_router(search_router, prefix=api_prefix)

    # -------------------------------------------------------------------------
    # Health Check Endpoint
    # -------------------------------------------------------------------------
    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check",
        description="Check if the API is running and healthy.",
    )
    async def health_check() -> dict:
        """
        Health check endpoint.

        Used by load balancers, container probes and monitoring.
        """
        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": settings.api_version,
            "cache": get_cache_stats(),
            "rate_limiting": {
                "enabled": settings.rate_limit_enabled,
                "default_limit": settings.rate_limit_default,
                "search_limit": (
                    f"{settings.search_rate_limit}/"
                    f"{settings.search_rate_window_seconds}s"
                ),
            },
            "ai_search": {
                "enabled": settings.ai_search_enabled,
                "model": settings.gemini_model,
            },
        }

    @app.get(
        "/",
        tags=["Root"],
        summary="API root",
        description="Welcome message and API information.",
    )
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    return app


# =============================================================================
# Application Instance
# =============================================================================
# This is what uvicorn imports: uvicorn bookshare.main:app

app = create_app()


# =============================================================================
# Development Server
# =============================================================================
# python -m bookshare.main

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "bookshare.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
