"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan builds the realtime stack on startup (Redis, relay,
session registry) and drains it on shutdown.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from campusevents import __version__
from campusevents.api import api_router
from campusevents.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at shutdown.
    The relay is optional — if Redis is missing the app still serves.
    """
    logger.info(
        "campusevents.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from campusevents.realtime.container import build_realtime

    realtime = await build_realtime(settings)
    app.state.realtime = realtime
    await realtime.start()

    yield

    # Shutdown: stop reading, drain in-flight notifications, close pools
    logger.info("campusevents.shutdown")
    await realtime.shutdown()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="Campus Events Realtime",
        description="Live event, ticket and analytics updates for campus event dashboards",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from campusevents.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: campusevents.main:app)
app = create_app()
