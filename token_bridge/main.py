"""
FastAPI application entrypoint for the provider token bridge.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from token_bridge.api.errors import register_exception_handlers
from token_bridge.api.routes import router as api_router
from token_bridge.core.config import get_settings
from token_bridge.core.logging import configure_logging
from token_bridge.dependencies import (
    get_auth_code_registry,
    get_state_registry,
    get_token_cipher_service,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    registries = (get_state_registry(), get_auth_code_registry())
    for registry in registries:
        registry.start()
    try:
        yield
    finally:
        for registry in registries:
            await registry.stop()


def create_app() -> FastAPI:
    """Factory for the FastAPI application.

    Configuration problems (bad key material, weak signing secret, store
    inside the public directory) raise ``ConfigurationError`` here.
    """
    settings = get_settings()
    configure_logging(settings.log_level)
    # Fail fast on key material instead of on the first request.
    get_token_cipher_service()

    app = FastAPI(
        title="Provider Token Bridge",
        version="0.1.0",
        description="Two-hop OAuth bridge brokering provider credentials for a reporting connector.",
        lifespan=lifespan,
    )
    if settings.cors_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allowed_origins),
            allow_credentials=False,
            allow_methods=["GET", "POST"],
            allow_headers=["Authorization", "Content-Type"],
        )
    register_exception_handlers(app)
    app.include_router(api_router)

    public_dir = settings.storage.public_dir
    if public_dir is not None and public_dir.is_dir():
        app.mount("/", StaticFiles(directory=public_dir), name="public")

    logger.info("Token bridge configured for %s (%s)", settings.base_url, settings.environment)
    return app


app = create_app()

__all__ = ["app", "create_app"]
