"""
Main FastAPI application entry point.
Responsibilities: App setup, router registration, startup/shutdown hooks.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .config import Settings, get_settings
from .db.migrations import run_migrations
from .dependencies import ServiceContainer
from .logging_config import logger
from .routes import buckets, documents, knowledge


def startup(container: ServiceContainer) -> None:
    """Prepare the database, warm up the embedding model and seed default buckets."""
    if container.engine is not None:
        logger.info("Running database migrations...")
        applied = run_migrations(container.engine, embed_dim=container.settings.embed_dim)
        logger.info("Database migrations completed", scripts=applied)

    try:
        logger.info("Preloading embedding model...")
        container.embedder.preload()
        logger.info("Embedding model ready")
    except Exception as e:
        logger.error("Embedding model preload failed", exc_info=e)
        # model loads lazily on first request instead

    seeded = container.seed_default_buckets()
    if seeded:
        logger.info("Seeded default buckets", count=seeded)


def create_app(settings: Optional[Settings] = None, services: Optional[ServiceContainer] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = ServiceContainer.from_settings(settings or get_settings())
        container: ServiceContainer = app.state.services
        startup(container)

        yield

        if container.engine is not None:
            container.engine.dispose()
        logger.info("Application shutting down")

    app = FastAPI(title="Knowledge Garden", version="0.6.0", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    # Register routers
    app.include_router(buckets.router)
    app.include_router(documents.router)
    app.include_router(knowledge.router)

    return app


app = create_app()
