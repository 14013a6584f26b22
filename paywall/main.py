"""
Main FastAPI application
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paywall.core.config import settings
from paywall.api.v1.router import api_router
from paywall.services.job_service import JobService
from paywall.db.store import InMemoryJobStore

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_job_service() -> JobService:
    """Job service backed by the database when DATABASE_URL is set, memory otherwise"""
    if settings.DATABASE_URL:
        from paywall.db.sql_store import SqlJobStore
        return JobService(store=SqlJobStore())
    logger.warning("DATABASE_URL not set, jobs are kept in memory only")
    return JobService(store=InMemoryJobStore())


def create_app(job_service: Optional[JobService] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description="Masumi escrow paywall for agent jobs",
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.job_service = job_service if job_service is not None else build_job_service()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )

    # Include API routes (Masumi standard - no prefix)
    app.include_router(api_router)

    @app.on_event("startup")
    async def startup_event():
        """Startup event handler"""
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Payment service configured: {app.state.job_service.payment_service.is_configured()}")

        from paywall.db.sql_store import SqlJobStore
        if isinstance(app.state.job_service.store, SqlJobStore):
            from paywall.db.base import init_models
            await init_models()
            logger.info("Database tables ready")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Shutdown event handler"""
        logger.info(f"Shutting down {settings.APP_NAME}")
        await app.state.job_service.aclose()

    return app


app = create_app()
