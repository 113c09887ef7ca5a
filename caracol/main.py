"""
Diagnostics server: FastAPI application factory and uvicorn runner.
"""
from contextlib import asynccontextmanager
from typing import Optional, Tuple

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from caracol.api.health import router as health_router
from caracol.api.metrics import router as metrics_router
from caracol.core.config import settings
from caracol.core.database import Database
from caracol.core.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} diagnostics server")
    yield
    logger.info("Shutting down diagnostics server")


def create_app(db: Database) -> FastAPI:
    """
    Application factory function.

    The database is owned by the caller; the app only borrows it for the
    detailed health check.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Collector diagnostics",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.db = db

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        logger.error(
            f"Unhandled exception: {exc}",
            extra={"extra_fields": {"path": request.url.path, "method": request.method}},
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with service information."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "health": "/health",
            "metrics": "/metrics",
        }

    app.include_router(health_router, tags=["Health"])
    app.include_router(metrics_router)

    return app


def parse_addr(addr: str) -> Tuple[str, int]:
    """Split ``host:port``; an empty host listens on all interfaces."""
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address {addr!r}, expected HOST:PORT")
    return host or "0.0.0.0", int(port)


def build_server(db: Database, addr: str, log_level: Optional[str] = None) -> uvicorn.Server:
    """uvicorn server for the diagnostics app; run it with ``await server.serve()``."""
    host, port = parse_addr(addr)
    config = uvicorn.Config(
        create_app(db),
        host=host,
        port=port,
        log_config=None,
        log_level=(log_level or settings.LOG_LEVEL).lower(),
        lifespan="on",
    )
    server = uvicorn.Server(config)
    # Signals are handled by the daemon
    server.install_signal_handlers = lambda: None
    return server
