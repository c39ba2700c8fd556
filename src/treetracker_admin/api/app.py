"""FastAPI application factory.

Usage::

    from treetracker_admin.api.app import create_app

    app = create_app(settings)                 # builds components on startup
    app = create_app(settings, components)     # pre-built (tests)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response

from treetracker_admin import __version__
from treetracker_admin.api.errors import install_error_handlers
from treetracker_admin.api.middleware import RequestContextMiddleware
from treetracker_admin.api.trees import router as trees_router
from treetracker_admin.core.config import Settings
from treetracker_admin.main import AppComponents, build_components
from treetracker_admin.observability import metrics

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    components: AppComponents | None = None,
) -> FastAPI:
    """Create the admin API application.

    When *components* is omitted they are built from *settings* during
    startup and torn down on shutdown.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = components is None
        comps = components if components is not None else await build_components(settings)
        app.state.components = comps
        await comps.start()
        metrics.set_system_info(
            __version__,
            settings.storage_backend.value,
            settings.messaging.backend.value,
        )
        logger.info(
            "Admin API started storage=%s messaging=%s publishing=%s",
            settings.storage_backend.value,
            settings.messaging.backend.value,
            settings.enable_verification_publishing,
        )
        try:
            yield
        finally:
            await comps.stop()
            if owned:
                app.state.components = None
            logger.info("Admin API stopped")

    app = FastAPI(
        title="Treetracker Admin API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.components = components

    app.add_middleware(RequestContextMiddleware)
    install_error_handlers(app)
    app.include_router(trees_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics", include_in_schema=False)
    async def prometheus_metrics() -> Response:
        body, content_type = metrics.render_latest()
        return Response(content=body, media_type=content_type)

    return app
