"""TM Paysage Site Manager — FastAPI Application Factory."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from site_manager import __version__
from site_manager.absences.router import router as absences_router
from site_manager.auth.router import router as auth_router
from site_manager.common.exceptions import register_exception_handlers
from site_manager.common.rate_limit import limiter
from site_manager.config import settings
from site_manager.conversations.legacy import router as legacy_messages_router
from site_manager.conversations.router import router as conversations_router
from site_manager.dashboard.router import router as dashboard_router
from site_manager.interventions.router import router as interventions_router
from site_manager.mail.router import router as mail_router
from site_manager.media.processing import FileProcessingService
from site_manager.realtime.router import router as realtime_router
from site_manager.sites.router import router as sites_router
from site_manager.tasks.router import router as tasks_router
from site_manager.users.router import router as users_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    FileProcessingService().ensure_directories()
    logger.info("Site Manager %s starting (%s)", __version__, settings.ENVIRONMENT)
    yield
    logger.info("Site Manager shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="TM Paysage Site Manager",
        description="Construction site management: teams, absences, workshop interventions and chat",
        version=__version__,
        docs_url="/api/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url="/api/redoc" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )

    # Exception handlers (RFC 7807)
    register_exception_handlers(app)

    # Rate limiting (slowapi)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check (no auth)
    @app.get("/api/v1/health", tags=["system"])
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "environment": settings.ENVIRONMENT,
        }

    # Register routers
    app.include_router(auth_router, prefix="/api/v1/auth", tags=["auth"])
    app.include_router(users_router, prefix="/api/v1/users", tags=["users"])
    app.include_router(sites_router, prefix="/api/v1/sites", tags=["sites"])
    app.include_router(tasks_router, prefix="/api/v1/tasks", tags=["tasks"])
    app.include_router(absences_router, prefix="/api/v1/absences", tags=["absences"])
    app.include_router(interventions_router, prefix="/api/v1/interventions", tags=["interventions"])
    app.include_router(conversations_router, prefix="/api/v1/conversations", tags=["conversations"])
    app.include_router(mail_router, prefix="/api/v1/mail", tags=["mail"])
    app.include_router(dashboard_router, prefix="/api/v1/dashboard", tags=["dashboard"])
    app.include_router(legacy_messages_router)
    app.include_router(realtime_router)

    # Uploaded media; the directory must exist before StaticFiles checks it
    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=upload_dir), name="uploads")

    return app


app = create_app()
