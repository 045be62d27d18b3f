"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from neosynth import __version__
from neosynth.api.middleware.cors import setup_cors
from neosynth.api.v1 import api_router
from neosynth.config.settings import AppConfig, configure_logging
from neosynth.engine.client import AuthEngine, check_secrets
from neosynth.errors.definitions import ErrAuthInternal
from neosynth.errors.neosynth_errors import NeoSynthError, RateLimitedError
from neosynth.metrics.collector import AuthMetrics
from neosynth.metrics.middleware import PrometheusMiddleware

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the AuthEngine for the lifetime of the server process."""
    config: AppConfig = app.state.config
    configure_logging(config)
    engine = AuthEngine(config, metrics=app.state.metrics)

    try:
        await engine.initialize()
        app.state.engine = engine
        logger.info("NeoSynth auth listening as %s v%s", app.title, app.version)
        yield
    finally:
        app.state.engine = None
        await engine.close()
        logger.info("NeoSynth auth engine shut down")


def _error_response(exc: NeoSynthError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.reset_time)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NeoSynthError)
    async def _neosynth_error(request: Request, exc: NeoSynthError) -> JSONResponse:
        return _error_response(exc)

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        # Clients only ever see the generic body; details stay in the log.
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(ErrAuthInternal)


def create_app(*, config: AppConfig | None = None) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        config: Optional AppConfig. If *None*, a default config is created
            from environment variables.

    Raises:
        MisconfiguredError: If a required secret is missing or malformed.
            The service refuses to start rather than run without it.
    """
    if config is None:
        config = AppConfig()

    check_secrets(config)

    app = FastAPI(
        title="neosynth-auth",
        version=__version__,
        description="NeoSynth authentication and credential lifecycle service",
        lifespan=_lifespan,
    )
    app.state.config = config
    app.state.metrics = AuthMetrics()
    app.state.engine = None

    setup_cors(app, config.server.cors_origins)
    app.add_middleware(PrometheusMiddleware, registry=app.state.metrics.registry)
    _install_error_handlers(app)

    @app.get("/health", tags=["base"])
    async def health() -> dict[str, str]:
        engine: AuthEngine | None = app.state.engine
        if engine is None:
            return {"status": "starting"}
        return {"status": "ok", **await engine.health_check()}

    @app.get("/metrics", tags=["base"], include_in_schema=False)
    async def metrics_endpoint() -> Response:
        return Response(content=generate_latest(app.state.metrics.registry), media_type=CONTENT_TYPE_LATEST)

    app.include_router(api_router)
    return app
