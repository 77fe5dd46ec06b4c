"""
Dashboard integrations API — application entry point.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import register_exception_handlers
from api.middleware import register_middleware
from api.routes import router as api_router
from auth.routes import router as auth_router
from billing.routes import router as billing_router
from config.settings import config, validate_config
from connectors.registry import ConnectorRegistry
from connectors.routes import router as integrations_router
from database.session import dispose_engine

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "asyncpg", "urllib3"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Refuse to serve with a broken deployment instead of failing per request.
    validate_config(config)

    unconfigured = ConnectorRegistry().report()
    if unconfigured:
        logger.warning("Integrations without credentials: %s", ", ".join(unconfigured))

    logger.info("Application ready to accept requests.")
    yield
    await dispose_engine()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Dashboard Integrations API",
        version=config.app_version or "1.0.0",
        description="OAuth integrations, billing and dashboard events.",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    register_exception_handlers(app)

    # Routes
    app.include_router(auth_router, prefix="/api/auth")
    app.include_router(integrations_router, prefix="/api/integrations")
    app.include_router(billing_router, prefix="/api/billing")
    app.include_router(api_router, prefix="/api")

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
