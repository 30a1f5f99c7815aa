"""FastAPI application factory for AuthVault."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from authvault import __version__
from authvault.auth.rate_limit import RateLimiter
from authvault.auth.service import build_auth_service
from authvault.core.client import S3ClientManager
from authvault.core.settings import AuthVaultSettings, load_settings
from authvault.fastapi.admin import router as admin_router
from authvault.fastapi.error_handlers import register_error_handlers
from authvault.fastapi.middleware import SecurityHeadersMiddleware
from authvault.fastapi.responses import success_response
from authvault.fastapi.routes import router as auth_router

logger = logging.getLogger(__name__)


def create_app(
    settings: AuthVaultSettings | None = None,
    s3_client=None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Create the AuthVault application.

    When ``s3_client`` is given the services are wired immediately around
    it and the lifespan leaves it alone (tests pass the in-memory double
    this way). Otherwise the lifespan opens an aiobotocore client, makes
    sure the bucket exists and closes the client on shutdown.

    Args:
        settings: Application settings (read from the environment if omitted)
        s3_client: An already-open S3 client
        rate_limiter: Rate limiter to use instead of a fresh one

    Returns:
        Configured FastAPI application
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        manager = None
        if getattr(app.state, "auth_service", None) is None:
            manager = S3ClientManager(settings)
            client = await manager.start()
            await manager.ensure_bucket_exists()
            app.state.auth_service = build_auth_service(settings, client)
            logger.info(f"{settings.app_name} started with bucket {settings.aws_bucket_name}")
        try:
            yield
        finally:
            if manager is not None:
                await manager.close()
                app.state.auth_service = None
                logger.info(f"{settings.app_name} shut down")

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.rate_limiter = rate_limiter or RateLimiter(enabled=settings.rate_limits_enabled)
    app.state.auth_service = (
        build_auth_service(settings, s3_client) if s3_client is not None else None
    )

    register_error_handlers(app, include_generic=not settings.debug)
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.secure_cookies)

    app.include_router(auth_router)
    app.include_router(admin_router)

    @app.get("/health", tags=["health"])
    async def health():
        return success_response({"status": "healthy", "version": __version__})

    return app
