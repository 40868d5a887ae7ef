"""
Claw4Growth Platform Service: deploy, instance management, Telegram, billing.

The API never provisions containers itself: it records provisioning
requests and the provisioner worker (provisioner_main.py) carries them out.
Instance lifecycle actions (start/stop/restart/teardown) do talk to the
container engine directly.

Usage:
    uvicorn platform_main:app --host 0.0.0.0 --port 8000
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from c4g.api import (
    billing_router,
    deploy_router,
    instances_router,
    register_exception_handlers,
    telegram_router,
)
from c4g.config import Settings, get_settings
from c4g.db import create_engine_and_sessionmaker, init_db
from c4g.exceptions import EngineUnavailableError
from c4g.logging_config import setup_logging
from c4g.runtime import DockerRuntime
from c4g.services.billing_service import BillingService
from c4g.services.instance_store import InstanceStore
from c4g.services.orchestrator import ProvisioningOrchestrator
from c4g.services.pairing import PairingService
from c4g.services.telegram_router import TelegramRouter
from c4g.utils import CredentialCipher

logger = logging.getLogger("c4g.platform")

VERSION = "1.0.0"


def wire_services(
    app: FastAPI,
    settings: Settings,
    session_factory,
    runtime: Optional[DockerRuntime],
    http: httpx.AsyncClient,
) -> None:
    """Build the service graph on ``app.state`` from already-constructed clients."""
    cipher = CredentialCipher(settings.encryption_key, fallback_secret=settings.jwt_secret)
    store = InstanceStore(session_factory, cipher)
    billing = BillingService(session_factory, settings)
    pairing = PairingService(session_factory, ttl_minutes=settings.pairing_ttl_minutes)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.store = store
    app.state.billing = billing
    app.state.pairing = pairing
    app.state.runtime = runtime
    app.state.orchestrator = (
        ProvisioningOrchestrator(store, runtime, settings, tier_lookup=billing.tier_for_user)
        if runtime is not None
        else None
    )
    app.state.telegram_router = TelegramRouter(store, pairing, http, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    app.state.started_at = time.time()

    # ── Startup ───────────────────────────────────────────────
    logger.info("Claw4Growth Platform starting up...")
    engine, session_factory = create_engine_and_sessionmaker(settings.database_url, echo=settings.debug)
    await init_db(engine)
    logger.info("Database initialized")

    runtime = None
    try:
        runtime = DockerRuntime.from_settings(settings)
        logger.info("Container engine connected")
    except EngineUnavailableError as e:
        # deploy/status/telegram still work; lifecycle endpoints answer 503
        logger.error(f"Container engine unavailable, instance actions disabled: {e}")

    http = httpx.AsyncClient()
    wire_services(app, settings, session_factory, runtime, http)
    logger.info("Claw4Growth Platform ready.")
    yield

    # ── Shutdown ──────────────────────────────────────────────
    logger.info("Claw4Growth Platform shutting down...")
    await http.aclose()
    if runtime is not None:
        runtime.close()
    await engine.dispose()
    logger.info("Claw4Growth Platform shutdown complete.")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title=settings.app_name,
        description="Instance provisioning, lifecycle, Telegram routing and billing",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(deploy_router, prefix=settings.api_prefix)
    app.include_router(instances_router, prefix=settings.api_prefix)
    app.include_router(telegram_router, prefix=settings.api_prefix)
    app.include_router(billing_router, prefix=settings.api_prefix)

    @app.get("/health")
    @app.get("/api/health")
    async def health():
        db_status = "connected"
        try:
            async with app.state.session_factory() as db:
                await db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            db_status = f"error: {e}"

        started = getattr(app.state, "started_at", None)
        return {
            "status": "healthy" if db_status == "connected" else "degraded",
            "version": VERSION,
            "database": db_status,
            "container_engine": "connected" if app.state.runtime is not None else "unavailable",
            "uptime_seconds": round(time.time() - started, 1) if started else 0,
        }

    return app


app = create_app()
