"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from auth_backend.api.errors import register_exception_handlers
from auth_backend.api.router import router as auth_router
from auth_backend.config import Settings, settings
from auth_backend.database.engine import async_session_factory, engine, init_db
from auth_backend.database.token_store import TokenStore
from auth_backend.services.base import BaseDelivery
from auth_backend.services.email_service import EmailService
from auth_backend.services.sms_service import SmsService
from auth_backend.tokens.manager import TokenManager
from auth_backend.tokens.signer import Signer
from auth_backend.tokens.verifier import Verifier

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


def create_app(
    app_settings: Settings = settings,
    bind: AsyncEngine = engine,
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    email_service: BaseDelivery | None = None,
    sms_service: BaseDelivery | None = None,
) -> FastAPI:
    """Wire the process-scoped components and return the app.

    Every collaborator is constructed here once and handed to the routes
    through ``app.state``; nothing is imported as a module-level singleton.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown lifecycle hook."""
        logger.info("Starting %s …", app_settings.app_name)
        await init_db(bind)
        logger.info("Database initialised")
        yield
        logger.info("Shutting down %s …", app_settings.app_name)

    app = FastAPI(
        title=app_settings.app_name,
        description="Authentication backend: sessions, one-time codes and 2FA",
        version="0.1.0",
        lifespan=lifespan,
    )

    store = TokenStore(session_factory)
    signer = Signer(app_settings.token_secret, app_settings.jwt_algorithm)

    app.state.settings = app_settings
    app.state.session_factory = session_factory
    app.state.token_manager = TokenManager.from_settings(app_settings, store, signer)
    app.state.verifier = Verifier(store, signer)
    app.state.email_service = email_service or EmailService(app_settings)
    app.state.sms_service = sms_service or SmsService(app_settings)

    register_exception_handlers(app)
    app.include_router(auth_router)

    @app.get("/health")
    async def health_check():
        """Simple liveness probe."""
        return {"status": "healthy", "app": app_settings.app_name}

    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn (``auth-backend`` console script)."""
    import uvicorn

    uvicorn.run(
        "auth_backend.main:app",
        host="127.0.0.1",
        port=8000,
        log_level="debug" if settings.debug else "info",
    )
