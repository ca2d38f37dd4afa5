"""
hostbridge FastAPI entrypoint.

Provides a ``create_app`` factory that configures logging, CORS, the
request middleware, exception handlers and the broker routes. The broker
instance lives on ``app.state.broker``; it is in-process only and every
outstanding call is lost on restart.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.routing import APIRoute

from hostbridge import __version__
from hostbridge.broker.core import CommandBroker
from hostbridge.config.settings import BrokerSettings, get_settings
from hostbridge.logging_config import init_logging
from hostbridge.server.core.errors import register_exception_handlers
from hostbridge.server.core.middleware_ex import RequestIDMiddleware, TimingMiddleware
from hostbridge.server.routes.broker import router as broker_router

LOGGER = logging.getLogger(__name__)


def _configure_logging(settings: BrokerSettings) -> Path:
    log_path = init_logging(log_dir=settings.log_dir, level=settings.log_level)
    LOGGER.info(
        "Broker logging configured",
        extra={"log_path": str(log_path), "log_level": settings.log_level},
    )
    return log_path


def _resolve_cors_origins(origins: Sequence[str]) -> list[str]:
    # Preserve order while removing duplicates
    return list(dict.fromkeys(origin for origin in origins if origin))


def create_app(
    settings: Optional[BrokerSettings] = None,
    *,
    broker: Optional[CommandBroker] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """Application factory used by the CLI launcher and ASGI servers."""
    settings = settings or get_settings()
    log_path = _configure_logging(settings) if configure_logging else None

    app = FastAPI(title="hostbridge", version=__version__)
    app.state.settings = settings
    app.state.broker = broker or CommandBroker.from_settings(settings)
    app.state.log_path = log_path

    origins = _resolve_cors_origins(settings.cors_origins)
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials="*" not in origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)
    app.include_router(broker_router)

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        status = app.state.broker.status()
        if status["pendingResponses"]:
            LOGGER.warning(
                "Broker stopping with %d caller(s) still waiting",
                status["pendingResponses"],
            )

    LOGGER.info(
        "Broker application ready",
        extra={
            "routes": sorted(
                {route.path for route in app.routes if isinstance(route, APIRoute)}
            ),
            "base_url": settings.base_url,
            "version": __version__,
        },
    )
    return app
