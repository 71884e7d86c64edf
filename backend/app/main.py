"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import Settings, settings as default_settings
from app.core.logging import log_error, setup_logging
from app.core.metrics import get_content_type, get_metrics, set_app_info
from app.core.middleware import (
    CanonicalHostMiddleware,
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from app.modules.conversion.errors import ConversionError
from app.modules.conversion.process import ProcessRunner
from app.modules.conversion.router import router as conversion_router
from app.modules.conversion.scheduler import ConversionScheduler
from app.modules.conversion.service import ConversionService
from app.modules.site.router import mount_static, router as site_router

logger = logging.getLogger(__name__)


async def conversion_error_handler(request: Request, exc: ConversionError) -> JSONResponse:
    """Render a conversion error as ``{"message": ...}``."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message},
        headers=exc.headers,
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": message},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(status_code=400, content={"message": "Invalid request"})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected errors server-side; never expose the trace to the client."""
    log_error(logger, "Unhandled error", exception=exc, path=request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


def create_app(
    settings: Optional[Settings] = None,
    process_runner: Optional[ProcessRunner] = None,
    scheduler: Optional[ConversionScheduler] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings to use (module-level settings by default)
        process_runner: Process runner for ffmpeg/ffprobe (real subprocesses by default)
        scheduler: Shared admission controller (built from settings by default)
        configure_logging: Install the root log handler

    Returns:
        Configured FastAPI app
    """
    settings = settings or default_settings

    if configure_logging:
        setup_logging(
            level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
            json_format=settings.LOG_JSON,
            include_stack_trace=True,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.ensure_dirs()
        logger.info(
            "Converter service started",
            extra={
                "upload_dir": str(settings.UPLOAD_DIR),
                "max_concurrent": settings.MAX_CONCURRENT_CONVERSIONS,
                "timeout_ms": settings.CONVERSION_TIMEOUT_MS,
            },
        )
        yield
        logger.info("Converter service stopped")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Upload an audio or video file and download it converted to another audio format.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.conversion_service = ConversionService.from_settings(
        settings,
        process_runner=process_runner,
        scheduler=scheduler,
    )

    set_app_info(
        version=settings.VERSION,
        environment="development" if settings.DEBUG else "production",
    )

    app.add_exception_handler(ConversionError, conversion_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["Content-Disposition", "X-Correlation-ID"],
        )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    if settings.CANONICAL_HOST:
        app.add_middleware(CanonicalHostMiddleware, canonical_host=settings.CANONICAL_HOST)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics", response_class=PlainTextResponse, include_in_schema=False)
    async def prometheus_metrics() -> PlainTextResponse:
        """Prometheus metrics in text exposition format."""
        return PlainTextResponse(content=get_metrics(), media_type=get_content_type())

    app.include_router(conversion_router)
    app.include_router(site_router)

    # Catch-all mount, must come last
    mount_static(app, settings.STATIC_DIR)

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        log_config=None,
    )
