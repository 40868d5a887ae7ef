"""Request-scoped access to the clients built in the application lifespan."""

from fastapi import Request

from c4g.config import Settings
from c4g.exceptions import EngineUnavailableError
from c4g.services.billing_service import BillingService
from c4g.services.instance_store import InstanceStore
from c4g.services.orchestrator import ProvisioningOrchestrator
from c4g.services.pairing import PairingService
from c4g.services.telegram_router import TelegramRouter


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> InstanceStore:
    return request.app.state.store


def get_orchestrator(request: Request) -> ProvisioningOrchestrator:
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise EngineUnavailableError("Container engine is not connected")
    return orchestrator


def get_pairing(request: Request) -> PairingService:
    return request.app.state.pairing


def get_router(request: Request) -> TelegramRouter:
    return request.app.state.telegram_router


def get_billing(request: Request) -> BillingService:
    return request.app.state.billing
