"""
Main API application module for imgopt.

This module creates and configures the FastAPI application, wiring the
image optimizer into the application lifespan.
"""

from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI

from imgopt.api.exception_handlers import setup_exception_handlers
from imgopt.api.routers import optimize
from imgopt.services.optimizer import CacheJanitorService, OptimizationService, OptimizerConfig
from imgopt.settings import Settings, get_settings
from imgopt.utils.logger import logger, setup_logging


def configure_logging(settings: Settings) -> None:
    """Configure loguru from application settings."""
    setup_logging(
        level=settings.log_level,
        format=settings.log_format,
        log_to_file=settings.log_to_file,
        log_file=settings.get_log_dir() / "imgopt.log",
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


def build_lifespan(
    settings: Settings,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Create the lifespan context manager for the given settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan context manager.

        Builds the optimizer (a ConfigError aborts startup), starts the
        optional cache janitor and releases both on shutdown.
        """
        config = OptimizerConfig.from_settings(settings)
        service = OptimizationService(config)
        app.state.optimizer = service

        janitor: CacheJanitorService | None = None
        if settings.cache_janitor_enabled:
            janitor = CacheJanitorService(
                service.store,
                interval=settings.cache_janitor_interval,
                max_cache_size_bytes=settings.max_cache_size_bytes,
            )
            await janitor.start()

        logger.info("Application startup complete")

        try:
            yield
        finally:
            if janitor is not None:
                await janitor.stop()
            await service.aclose()
            app.state.optimizer = None
            logger.info("Application shutdown")

    return lifespan


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings, the global settings when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="imgopt",
        description="Request-time image optimization and caching service",
        version="0.1.0",
        debug=settings.debug,
        lifespan=build_lifespan(settings),
        root_path=settings.root_url if settings.root_url != "/" else "",
    )

    setup_exception_handlers(app)
    app.include_router(optimize.router, tags=["Images"])

    return app


# Create default application instance
app = create_app()
