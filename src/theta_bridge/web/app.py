"""
FastAPI application exposing the request queue.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .. import __version__
from ..adapters.api import UpstreamClient, build_registry
from ..config import BridgeSettings, load_settings
from ..core.logging import get_logger
from ..core.registry import HandlerRegistry
from ..services.queue import RequestQueue
from . import routes

LOGGER = get_logger(__name__)


def build_queue(settings: BridgeSettings, *, registry: Optional[HandlerRegistry] = None) -> RequestQueue:
    """Wire the upstream client, handler registry and queue from ``settings``."""

    if registry is None:
        client = UpstreamClient(timeout=settings.request_timeout, connect_attempts=settings.connect_attempts)
        registry = build_registry(settings.base_url, client=client, handlers_file=settings.handlers_file)
    return RequestQueue.from_settings(settings, registry)


def create_app(
    settings: Optional[BridgeSettings] = None,
    *,
    queue: Optional[RequestQueue] = None,
    registry: Optional[HandlerRegistry] = None,
) -> FastAPI:
    """
    Build the bridge application.

    Parameters
    ----------
    settings:
        Resolved settings; loaded from the environment when omitted and no
        ``queue`` is given.
    queue:
        Pre-built queue, mainly for tests.
    registry:
        Registry to use when the queue is built here.
    """

    if queue is None:
        queue = build_queue(settings or load_settings(), registry=registry)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        LOGGER.info("Bridge started", extra={"handlers": len(queue.registry)})
        yield
        queue.shutdown()
        LOGGER.info("Bridge stopped")

    app = FastAPI(title="Theta Bridge", version=__version__, lifespan=lifespan)
    app.state.queue = queue
    app.include_router(routes.router)

    @app.get("/health", include_in_schema=False)
    async def health() -> dict:
        return {"status": "ok", "handlers": queue.registry.handler_ids(), "worker_running": queue.worker.running}

    return app
