"""
Post Dominator connection service — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.middleware import register_middleware
from config.settings import Settings, config
from connectors.encryption import TokenCipher
from connectors.exchanger import TokenExchanger
from connectors.registry import ProviderRegistry
from connectors.routes import router as connections_router
from connectors.scheduler import RefreshScheduler
from connectors.service import ConnectionService
from connectors.state import StateIssuer
from connectors.token_manager import CredentialStore
from database.session import build_engine, build_session_factory, init_models

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "sqlalchemy.engine", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def build_connection_service(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> ConnectionService:
    """Wire the credential lifecycle components from settings."""
    registry = ProviderRegistry.from_settings(settings)
    cipher = TokenCipher(settings.encryption_keys())
    state_issuer = StateIssuer(
        session_factory,
        settings.oauth_state_secret,
        ttl_seconds=settings.state_ttl_seconds,
    )
    exchanger = TokenExchanger(registry, timeout=settings.http_timeout_seconds)
    store = CredentialStore(session_factory, cipher)
    scheduler = RefreshScheduler(
        store,
        exchanger,
        buffer_seconds=settings.refresh_buffer_seconds,
        interval_seconds=settings.refresh_interval_seconds,
        state_issuer=state_issuer,
    )
    return ConnectionService(
        registry,
        state_issuer,
        exchanger,
        store,
        scheduler,
        connections_view_url=settings.connections_view_url,
        secure_cookies=settings.oauth_redirect_base.startswith("https"),
    )


def create_app(settings: Settings = config) -> FastAPI:
    app = FastAPI(
        title="Post Dominator Connections",
        version="1.0.0",
        description="OAuth connections for social platforms: connect, refresh, disconnect.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(connections_router, prefix="/api/v1/connections")

    @app.on_event("startup")
    async def on_startup():
        engine = build_engine(settings.database_url)
        await init_models(engine)
        app.state.engine = engine
        app.state.connections = build_connection_service(settings, build_session_factory(engine))

        logger.info(
            "Configured platforms: %s",
            app.state.connections.registry.list_configured() or "none",
        )
        if settings.scheduler_enabled:
            app.state.connections.scheduler.start()
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.connections.scheduler.stop()
        await app.state.engine.dispose()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
