"""FastAPI app factory and uvicorn entry point."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config.settings import settings
from .controllers import feedback, phonemize, tts
from .database import check_connection, dispose_engine, init_models
from .domain.errors import PipelineError, ProviderError
from .middleware import StructuredLoggingMiddleware, TelemetryMiddleware
from .middleware.logging import logger as request_logger

PIPELINE_LOGGER = "speaking_feedback.pipeline"
QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore", "sqlalchemy.engine")

logger = logging.getLogger(__name__)


def _rotating_handler(path: str, max_bytes: int, fmt: str) -> RotatingFileHandler:
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=5, encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _configure_logging() -> None:
    """Wire stdout plus rotating app and pipeline logs.

    Request lines go to stdout only, already formatted by the middleware.
    Pipeline traces get their own file so a single feedback run reads top to
    bottom without request noise.
    """

    level = logging.DEBUG if settings.debug else logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    root.addHandler(console)
    root.addHandler(
        _rotating_handler(
            settings.log_file, 1_000_000, "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        )
    )
    root.setLevel(level)

    request_logger.handlers.clear()
    bare = logging.StreamHandler(sys.stdout)
    bare.setFormatter(logging.Formatter("%(message)s"))
    request_logger.addHandler(bare)
    request_logger.setLevel(logging.INFO)
    request_logger.propagate = False

    pipeline = logging.getLogger(PIPELINE_LOGGER)
    pipeline.handlers.clear()
    pipeline.addHandler(
        _rotating_handler(settings.pipeline_log_file, 500_000, "%(asctime)s | %(levelname)s | %(message)s")
    )
    pipeline.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _register_error_handlers(app: FastAPI) -> None:
    async def on_http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    async def on_pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    async def on_provider_error(request: Request, exc: ProviderError) -> JSONResponse:
        logger.warning("Provider failure on %s: %s", request.url.path, exc.message)
        return JSONResponse(status_code=502, content={"detail": exc.message})

    async def on_unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.add_exception_handler(HTTPException, on_http_error)
    app.add_exception_handler(PipelineError, on_pipeline_error)
    app.add_exception_handler(ProviderError, on_provider_error)
    app.add_exception_handler(Exception, on_unhandled)


def _register_service_routes(app: FastAPI) -> None:
    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {
            "message": f"{settings.app_name} is running",
            "version": settings.app_version,
            "docs": "/docs",
        }

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        """Liveness plus a database round trip."""

        database_ok = await check_connection()
        return {
            "status": "healthy" if database_ok else "degraded",
            "database": "ok" if database_ok else "unavailable",
            "service": settings.app_name,
            "version": settings.app_version,
        }

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def create_app() -> FastAPI:
    _configure_logging()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        description="Streams IELTS speaking feedback as server-sent events.",
    )

    # Starlette runs the last-added middleware first: CORS, then logging, then metrics.
    app.add_middleware(TelemetryMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    for module in (feedback, tts, phonemize):
        app.include_router(module.router)
    _register_service_routes(app)
    _register_error_handlers(app)

    @app.on_event("startup")
    async def startup() -> None:
        await init_models()
        logger.info("%s %s started", settings.app_name, settings.app_version)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        provider_client = getattr(app.state, "provider_client", None)
        if provider_client is not None:
            await provider_client.aclose()
        await dispose_engine()

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "speaking_feedback.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
