"""Entry points for running the FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional

from fastapi import FastAPI, Request

from .config import Settings, get_settings
from .db.session import dispose_engine
from .logging_utils import configure_logging
from .monitoring.metrics import metrics_router
from .services import Services, build_services

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services_factory: Callable[[Settings], Services] = build_services,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_file, settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        services = services_factory(settings)
        app.state.services = services
        restored = await services.queue.initialize()
        logger.info(
            "Starting Scraper Orchestrator",
            extra={"environment": settings.environment, "restored_executions": restored},
        )
        try:
            yield
        finally:
            await services.queue.shutdown()
            await dispose_engine()
            logger.info("Scraper Orchestrator stopped")

    app = FastAPI(title="Scraper Orchestrator", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request) -> Dict[str, Any]:
        services: Services = request.app.state.services
        return {"status": "ok", "queue": services.queue.status()}

    if settings.enable_metrics:
        app.include_router(metrics_router)

    return app


__all__ = ["create_app"]
