"""
Instance management for the signed-in user.

GET    /api/instances/me          instance details
POST   /api/instances/me/start    start the container
POST   /api/instances/me/stop     stop the container
POST   /api/instances/me/restart  restart the container
POST   /api/instances/me/refresh  reconcile the stored status with the engine
DELETE /api/instances/me          tear down container, volumes, network and records
PUT    /api/instances/me/keys     update credentials / model and re-create the container
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from c4g.api.auth import get_current_user
from c4g.api.deps import get_app_settings, get_orchestrator, get_store
from c4g.config import Settings
from c4g.db.models import Instance
from c4g.exceptions import NotFoundError, ValidationError
from c4g.runtime.labels import instance_url
from c4g.services.instance_store import InstanceStore
from c4g.services.model_catalog import AVAILABLE_MODELS, get_model, is_known
from c4g.services.orchestrator import ProvisioningOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/instances", tags=["Instances"])


class InstanceOut(BaseModel):
    instance_id: str
    subdomain: str
    url: str
    status: str
    error_message: Optional[str] = None
    model_preference: str
    model_name: str
    has_anthropic_key: bool = False
    has_openai_key: bool = False
    has_telegram_bot_token: bool = False
    created_at: datetime
    updated_at: datetime


class ActionResponse(BaseModel):
    instance_id: str
    status: str


class KeysUpdate(BaseModel):
    """``None`` leaves a key untouched; an empty string removes it."""

    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    telegram_bot_token: Optional[str] = None
    model_preference: Optional[str] = None


async def _my_instance(store: InstanceStore, user_id: str) -> Instance:
    instance = await store.get_instance_for_user(user_id)
    if instance is None:
        raise NotFoundError("No instance for this user")
    return instance


@router.get("/me", response_model=InstanceOut)
async def get_my_instance(
    current_user=Depends(get_current_user),
    store: InstanceStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    instance = await _my_instance(store, current_user.id)
    config = await store.get_config(instance.id)
    preference = config.model_preference if config else settings.default_model_preference
    secrets = config.secrets if config else None
    return InstanceOut(
        instance_id=instance.id,
        subdomain=instance.subdomain,
        url=instance_url(instance.subdomain, settings.platform_domain),
        status=instance.status,
        error_message=instance.error_message,
        model_preference=preference,
        model_name=get_model(preference).name,
        has_anthropic_key=bool(secrets and secrets.anthropic_api_key),
        has_openai_key=bool(secrets and secrets.openai_api_key),
        has_telegram_bot_token=bool(secrets and secrets.telegram_bot_token),
        created_at=instance.created_at,
        updated_at=instance.updated_at,
    )


@router.post("/me/start", response_model=ActionResponse)
async def start_my_instance(
    current_user=Depends(get_current_user),
    store: InstanceStore = Depends(get_store),
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
):
    instance = await _my_instance(store, current_user.id)
    return ActionResponse(instance_id=instance.id, status=await orchestrator.start(instance.id))


@router.post("/me/stop", response_model=ActionResponse)
async def stop_my_instance(
    current_user=Depends(get_current_user),
    store: InstanceStore = Depends(get_store),
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
):
    instance = await _my_instance(store, current_user.id)
    return ActionResponse(instance_id=instance.id, status=await orchestrator.stop(instance.id))


@router.post("/me/restart", response_model=ActionResponse)
async def restart_my_instance(
    current_user=Depends(get_current_user),
    store: InstanceStore = Depends(get_store),
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
):
    instance = await _my_instance(store, current_user.id)
    return ActionResponse(instance_id=instance.id, status=await orchestrator.restart(instance.id))


@router.post("/me/refresh", response_model=ActionResponse)
async def refresh_my_instance(
    current_user=Depends(get_current_user),
    store: InstanceStore = Depends(get_store),
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
):
    instance = await _my_instance(store, current_user.id)
    return ActionResponse(instance_id=instance.id, status=await orchestrator.reconcile(instance.id))


@router.delete("/me")
async def delete_my_instance(
    current_user=Depends(get_current_user),
    store: InstanceStore = Depends(get_store),
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
):
    instance = await _my_instance(store, current_user.id)
    await orchestrator.teardown(instance.id)
    logger.info(f"User {current_user.id} deleted instance {instance.id}")
    return {"deleted": True, "instance_id": instance.id}


@router.put("/me/keys", response_model=ActionResponse)
async def update_my_keys(
    body: KeysUpdate,
    current_user=Depends(get_current_user),
    store: InstanceStore = Depends(get_store),
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
):
    """Store the new credentials and queue the container for re-creation."""
    if body.model_preference and not is_known(body.model_preference):
        raise ValidationError(
            f"Unknown model preference: {body.model_preference}",
            details={"available": [m.preference for m in AVAILABLE_MODELS]},
        )

    instance = await _my_instance(store, current_user.id)
    await store.upsert_config(
        instance.id,
        model_preference=body.model_preference,
        secrets={
            "anthropic_api_key": body.anthropic_api_key,
            "openai_api_key": body.openai_api_key,
            "telegram_bot_token": body.telegram_bot_token,
        },
    )
    status = await orchestrator.recreate(instance.id)
    return ActionResponse(instance_id=instance.id, status=status)
