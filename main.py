import uvicorn
from loguru import logger

from config.base import get_settings
from core.infrastructure.logging import setup_logging


def create_app():
    """Create and configure the reference push server.

    Sets up application lifespan events, exception handlers, and the
    notification API router.

    Returns
    -------
    FastAPI
        Deployment-ready FastAPI instance.
    """
    from contextlib import asynccontextmanager

    from fastapi import FastAPI, HTTPException
    from fastapi.exceptions import RequestValidationError, ResponseValidationError
    from pydantic import ValidationError
    from starlette.exceptions import HTTPException as StarletteHTTPException

    from core.infrastructure.exceptions.handler import global_exception_handler
    from notifications.infrastructure.factory import reset_notification_services
    from notifications.presentation import router as notification_router

    @asynccontextmanager
    async def custom_lifespan(app):
        """Manage application startup and shutdown lifecycle.

        Parameters
        ----------
        app : FastAPI
            FastAPI application instance.

        Yields
        ------
        None
            Control to application after startup, and before shutdown.
        """
        setup_logging()
        settings = get_settings()

        logger.info("🟢 Application startup completed.")
        logger.info(
            f"🚀✨ <green>Notification server is streaming with a "
            f"{settings.stream_heartbeat_seconds:g}s heartbeat</green>"
        )

        yield

        logger.debug("🔧 Dropping in-memory notification state...")
        reset_notification_services()
        logger.debug("👋 Application shutting down...")

    app = FastAPI(lifespan=custom_lifespan)

    app.add_exception_handler(ValueError, global_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    app.add_exception_handler(ValidationError, global_exception_handler)
    app.add_exception_handler(RequestValidationError, global_exception_handler)
    app.add_exception_handler(ResponseValidationError, global_exception_handler)
    app.add_exception_handler(HTTPException, global_exception_handler)
    app.add_exception_handler(StarletteHTTPException, global_exception_handler)

    app.include_router(notification_router)

    return app


if __name__ == "__main__":
    """Application entry point for direct execution.

    Configures logging with Loguru and starts the Uvicorn server.
    """
    setup_logging()
    settings = get_settings()
    logger.debug(
        f"🟢 Starting notification server in '{settings.environment.upper()}' mode!"
    )
    uvicorn.run(
        "main:create_app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.debug,
        factory=True,
        log_config=None,
    )
