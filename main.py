"""
Knowledge Base Connector & Sync service — application entry point.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from api.routes import router as api_router
from api.webhooks import router as webhook_router
from config.settings import config
from connectors.routes import router as oauth_router
from core.services import Services, build_services
from database.session import create_schema

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "openai", "anthropic", "urllib3", "aiosqlite"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title="Knowledge Base Connector & Sync",
        version="1.0.0",
        description="Connects external content sources and keeps their knowledge chunks in sync.",
    )
    app.state.services = services or build_services()

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(oauth_router, prefix="/api/auth")
    app.include_router(api_router, prefix="/api")
    app.include_router(webhook_router, prefix="/api")

    @app.on_event("startup")
    async def on_startup():
        svc: Services = app.state.services
        if svc.engine is not None:
            logger.info("Ensuring database schema…")
            await create_schema(svc.engine)

        svc.registry.log_configuration()
        if not svc.vault.enabled:
            logger.warning("CREDENTIAL_ENCRYPTION_KEY is not set — credential storage will refuse to work")

        await svc.orchestrator.start()
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.services.orchestrator.stop()

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
