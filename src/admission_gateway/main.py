"""Main entry point for the Admission Gateway application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from admission_gateway.api.procedures import build_rpc_router
from admission_gateway.api.routes import router
from admission_gateway.core.config import Settings, settings
from admission_gateway.core.logging import setup_logging
from admission_gateway.rl import (
    RateLimitBackendError,
    RateLimitExceededError,
    RateLimitMiddleware,
    RateLimitRegistry,
    create_rate_limit_registry,
    get_rate_limit_config,
    rate_limit_exceeded_handler,
    rate_limit_unavailable_handler,
)
from admission_gateway.rl.registry import API_KEY, GLOBAL

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan management
    Starts the rate limit sweepers and stops them on shutdown
    """
    # Startup
    logger.info("Starting Admission Gateway...")

    registry: Optional[RateLimitRegistry] = app.state.rate_limits
    if registry is not None:
        await registry.start()

    yield

    # Shutdown
    logger.info("Shutting down Admission Gateway...")
    if registry is not None:
        await registry.stop()


def _jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Custom validation error handler"""
    logger.warning(
        "Request validation failed",
        extra={
            "url": str(request.url),
            "method": request.method,
            "errors": exc.errors()
        }
    )

    return JSONResponse(
        status_code=422,
        content={
            "detail": "Request validation failed",
            "errors": _jsonable_errors(exc)
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """General exception handler for unhandled errors"""
    logger.error(
        "Unhandled exception",
        extra={
            "url": str(request.url),
            "method": request.method,
            "error": str(exc)
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error occurred"
        }
    )


def create_app(
    app_settings: Optional[Settings] = None,
    registry: Optional[RateLimitRegistry] = None
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings: Settings to use (defaults to the global settings)
        registry: Prebuilt rate limit registry; built from settings when omitted
    """
    app_settings = app_settings or settings

    if registry is None and app_settings.ENABLE_RATE_LIMITING:
        registry = create_rate_limit_registry(get_rate_limit_config(app_settings))

    app = FastAPI(
        title="Admission Gateway",
        description="Request admission and throttling for the messaging platform API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.rate_limits = registry
    app.state.rpc_router = build_rpc_router(registry)

    if registry is not None:
        # API-key metering only applies to the versioned public API
        app.add_middleware(
            RateLimitMiddleware,
            limiter=registry.get(API_KEY),
            apply_to_paths=("/api/v1",),
            fail_open=registry.fail_open,
            include_headers=registry.include_headers
        )
        # Added last so it runs first
        app.add_middleware(
            RateLimitMiddleware,
            limiter=registry.get(GLOBAL),
            fail_open=registry.fail_open,
            include_headers=registry.include_headers
        )
    else:
        logger.warning("Rate limiting is disabled")

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "X-RateLimit-Policy",
            "Retry-After"
        ]
    )

    # Add custom exception handlers
    app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)
    app.add_exception_handler(RateLimitBackendError, rate_limit_unavailable_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(router)

    return app


# Create app instance for uvicorn to find
app = create_app()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    logger.info(
        "Gateway configuration",
        extra={
            "host": settings.HOST,
            "port": settings.PORT,
            "debug": settings.DEBUG,
            "log_level": settings.LOG_LEVEL,
            "rate_limiting_enabled": settings.ENABLE_RATE_LIMITING,
            "rate_limit_fail_open": settings.RATE_LIMIT_FAIL_OPEN
        }
    )

    # Run the server
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True,
        server_header=False,  # Don't reveal server info
        date_header=True,
    )


if __name__ == "__main__":
    main()
