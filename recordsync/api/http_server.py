"""
FastAPI application factory for recordsync.

This module creates the HTTP surface with:
- SyncService lifecycle management
- CORS configuration for the presentation layer
- SyncError to JSON mapping
- The /v1 routes

Invariants:
    - The service is started before the first request and stopped on shutdown
    - SyncError responses have the shape {"error": {code, message, details}}

How to change safely:
    - Add endpoints under /v1, don't change existing response shapes
    - Map new SyncError subclasses in ERROR_STATUS
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import AppConfig
from ..errors import (
    ConfigurationError,
    SaveFailure,
    ShareAcceptanceFailure,
    SyncError,
    TransportFailure,
)
from ..service import SyncService
from .routes import router

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type, int] = {
    ShareAcceptanceFailure: 422,
    TransportFailure: 502,
    SaveFailure: 500,
    ConfigurationError: 500,
}


def _status_for(error: SyncError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


def create_app(
    service: Optional[SyncService] = None,
    config: Optional[AppConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Prebuilt service (tests); built from config if omitted
        config: Service configuration (loaded from env if omitted)
    """
    if service is None:
        service = SyncService(config)
    config = service.config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage sync service lifecycle."""
        await service.start()
        app.state.service = service

        yield

        await service.stop()

    app = FastAPI(
        title="recordsync",
        description="Pull-side sync of local-first health and pet records.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.api.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
        logger.warning(
            "Request failed",
            extra={"path": request.url.path, "code": exc.code, "error": exc.message},
        )
        return JSONResponse(status_code=_status_for(exc), content={"error": exc.to_dict()})

    app.include_router(router, prefix="/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "recordsync", "running": service.is_running}

    return app
