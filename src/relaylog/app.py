"""
FastAPI application wiring.

The Logger, the StackTraceRemapper and the ClientErrorHandler are built once in
the lifespan handler and handed to request code through ``app.state``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

from fastapi import FastAPI

from relaylog.client_errors import ClientErrorHandler
from relaylog.client_errors import router as client_errors_router
from relaylog.config import Settings
from relaylog.logging import Logger, create_logger
from relaylog.middleware import RequestLoggerMiddleware
from relaylog.sourcemap import SourceMapLoader, StackTraceRemapper


def create_app(
    settings: Optional[Settings] = None,
    *,
    logger_factory: Optional[Callable[[Settings], Logger]] = None,
) -> FastAPI:
    """Build the client error reporting service.

    Args:
        settings: resolved configuration (default: environment only)
        logger_factory: override for building the Logger, mainly for tests
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if logger_factory is not None:
            logger = logger_factory(settings)
        else:
            logger = create_logger(settings.logging, settings.pretty_print)
        remapper = StackTraceRemapper()
        loader = SourceMapLoader(remapper.cache, pattern=settings.source_map.pattern)
        await loader.load(settings.source_map.directory)

        app.state.settings = settings
        app.state.logger = logger
        app.state.remapper = remapper
        app.state.source_map_loader = loader
        app.state.client_error_handler = ClientErrorHandler(
            logger,
            remapper,
            remote_sink_configured=bool(settings.logging.http_config.url),
        )
        try:
            yield
        finally:
            await logger.aclose()

    app = FastAPI(title="relaylog", lifespan=lifespan)
    app.add_middleware(RequestLoggerMiddleware)
    app.include_router(client_errors_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok"}

    return app
