"""
FastAPI application entry point for the predictions backend.
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from bubble_backend.config import Settings, get_settings
from bubble_backend.errors import add_exception_handlers
from bubble_backend.middleware import CorsHeadersMiddleware
from bubble_backend.routes import router

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="AI Bubble Predictions", version="0.1.0")
    app.add_middleware(
        CorsHeadersMiddleware, allow_origin=settings.cors_allow_origin
    )
    add_exception_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)

    # Anything the API does not claim falls through to the static site.
    if settings.static_dir and os.path.isdir(settings.static_dir):
        app.mount(
            "/", StaticFiles(directory=settings.static_dir, html=True), name="static"
        )
    else:
        logger.info("No static directory at %r; serving API only", settings.static_dir)
    return app


app = create_app()
