from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from app.api.errors import register_exception_handlers
from app.api.v1.api import api_router
from app.core.config import settings
from app.core.database import engine, init_db
from app.core.logging import configure_logging
from app.core.redis import redis_client

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up", environment=settings.ENVIRONMENT)
    await init_db()
    if settings.RESOURCE_LOCK_BACKEND == "redis":
        await redis_client.init_redis()

    yield

    logger.info("Application shutting down")
    await redis_client.close()
    await engine.dispose()


def create_app() -> FastAPI:
    configure_logging()

    application = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    register_exception_handlers(application)
    application.include_router(api_router, prefix="/api/v1")

    @application.get("/health")
    async def health():
        return {"status": "healthy", "version": settings.VERSION}

    return application


app = create_app()
