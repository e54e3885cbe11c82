"""
ASGI application for the RTalks API.

``create_app`` wires every component explicitly from an ``AppSettings``
instance. The module-level ``app`` is built from the discovered config
file, for ``uvicorn rtalks.main:app``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from rtalks.config.settings import AppSettings, get_config_manager
from rtalks.core.api.errors import register_exception_handlers
from rtalks.core.api.rate_limiter import RateLimiter
from rtalks.core.api.router_admin import router as admin_router
from rtalks.core.api.router_public import router as public_router
from rtalks.core.auth.service import AdminAuthService, AuthGate
from rtalks.core.auth.tokens import TokenService
from rtalks.core.errors import StorageError
from rtalks.core.monitoring import MetricsCollector
from rtalks.core.storage.file.filenames import FilenameGenerator
from rtalks.core.storage.file.local_backend import PUBLIC_MOUNT, StorageResolver
from rtalks.core.storage.file.pipeline import UploadPipeline
from rtalks.core.storage.file.validator import UploadValidator
from rtalks.core.storage.sql_storage import SQLStore
from rtalks.logging.setup import get_logger, setup_logging

logger = get_logger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: AppSettings = app.state.settings
    logger.debug("Starting up the application")

    app.state.store.open()

    try:
        app.state.resolver.ensure_ready()
    except StorageError:
        if settings.is_production:
            logger.critical("Upload directory unusable in production, refusing to start")
            app.state.store.close()
            raise
        logger.error("Upload directory unusable; uploads will fail until it is fixed")

    logger.info(
        f"Application startup complete (environment={settings.environment})")

    yield

    logger.debug("Shutting down the application")
    app.state.store.close()
    logger.info("Application shutdown complete")


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Explicit settings; loaded through the ConfigManager if omitted

    Raises:
        ValueError: If the settings are not safe to deploy
    """
    if settings is None:
        config_manager = get_config_manager()
        settings = config_manager.load()
        setup_logging(config_manager.logging_config)

    settings.check_deployable()

    store = SQLStore(
        settings.database.url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
    )
    metrics = MetricsCollector()
    limiter = RateLimiter(settings.rate_limits)
    tokens = TokenService(
        settings.security.jwt_secret,
        key_id=settings.security.jwt_key_id,
        expiry=timedelta(hours=settings.security.jwt_expiry_hours),
    )
    gate = AuthGate(tokens, store)
    resolver = StorageResolver(settings.uploads, production=settings.is_production)
    pipeline = UploadPipeline(
        limiter=limiter,
        gate=gate,
        validator=UploadValidator(max_bytes=settings.uploads.max_size_bytes),
        filenames=FilenameGenerator(),
        resolver=resolver,
        metrics=metrics,
    )

    app = FastAPI(
        title="RTalks API",
        version=settings.api.version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.metrics = metrics
    app.state.rate_limiter = limiter
    app.state.tokens = tokens
    app.state.auth_gate = gate
    app.state.auth_service = AdminAuthService(tokens, store)
    app.state.resolver = resolver
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.allowed_origins if settings.is_production else ["*"],
        allow_credentials=settings.is_production,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        if request.url.path.startswith(PUBLIC_MOUNT + "/"):
            response.headers["Cache-Control"] = "public, max-age=86400"
        return response

    register_exception_handlers(app)

    @app.get("/health")
    def health():
        """Liveness plus database, upload directory and error counters."""
        database_ok = store.ping()
        try:
            upload_dir = str(resolver.ensure_ready())
            uploads_ok = True
        except StorageError:
            upload_dir = str(resolver.base_path())
            uploads_ok = False

        return {
            "status": "ok" if database_ok and uploads_ok else "degraded",
            "environment": settings.environment,
            "version": settings.api.version,
            "database": {"connected": database_ok},
            "uploads": {"path": upload_dir, "writable": uploads_ok},
            "metrics": metrics.snapshot(),
        }

    app.include_router(admin_router, prefix="/api/admin", tags=["admin"])
    app.include_router(public_router, prefix="/api/public", tags=["public"])
    app.mount(
        PUBLIC_MOUNT,
        StaticFiles(directory=str(resolver.base_path()), check_dir=False),
        name="uploads",
    )

    logger.debug("Application created")
    return app


app = create_app()
