"""
Deploy endpoints.

POST /api/deploy  record a provisioning request (the worker does the rest)
GET  /api/deploy  status of a user's instance

The API only writes the intent (Instance status=provisioning + config) and
returns immediately; the provisioner worker picks it up on its next tick.
"""

import logging
import re
import secrets
import string
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from c4g.api.deps import get_app_settings, get_pairing, get_store
from c4g.config import Settings
from c4g.db import get_db
from c4g.exceptions import ConflictError, PlatformError, ValidationError
from c4g.runtime.labels import instance_url
from c4g.services.auth_service import get_or_create_user
from c4g.services.instance_store import InstanceStore
from c4g.services.model_catalog import is_known
from c4g.services.pairing import PairingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/deploy", tags=["Deploy"])

SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
SLUG_MAX_LENGTH = 20
SUBDOMAIN_ATTEMPTS = 3


# ── Schemas ───────────────────────────────────────────────────────────────────

class DeployRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=36)
    email: str = Field(..., min_length=3, max_length=255)
    onboarding_data: Optional[Dict[str, Any]] = None
    model_preference: Optional[str] = None


class DeployResponse(BaseModel):
    success: bool = True
    instance_id: str
    subdomain: str
    url: str
    status: str
    pairing_code: Optional[str] = None
    telegram_bot_username: str


class DeployStatusResponse(BaseModel):
    exists: bool
    instance_id: Optional[str] = None
    status: Optional[str] = None
    subdomain: Optional[str] = None
    url: Optional[str] = None
    error_message: Optional[str] = None


# ── Helpers ───────────────────────────────────────────────────────────────────

def _random(length: int) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def generate_subdomain(base_name: str = "") -> str:
    """Human-readable subdomain, e.g. ``acme-marketing-8x2a``; 8 random chars without a name."""
    slug = re.sub(r"[^a-z0-9\s-]", "", (base_name or "").lower()).strip()
    slug = re.sub(r"\s+", "-", slug)[:SLUG_MAX_LENGTH].strip("-")
    if slug:
        return f"{slug}-{_random(4)}"
    return _random(8)


# ── Endpoints ─────────────────────────────────────────────────────────────────

@router.post("", response_model=DeployResponse)
async def deploy(
    body: DeployRequest,
    db: AsyncSession = Depends(get_db),
    store: InstanceStore = Depends(get_store),
    pairing: PairingService = Depends(get_pairing),
    settings: Settings = Depends(get_app_settings),
):
    """Create the instance record. Conflicts with an existing instance return 409."""
    if body.model_preference and not is_known(body.model_preference):
        raise ValidationError(f"Unknown model preference: {body.model_preference}")

    existing = await store.get_instance_for_user(body.user_id)
    if existing is not None:
        raise ConflictError("Instance already exists for this user", instance_id=existing.id)

    await get_or_create_user(db, body.user_id, body.email)

    onboarding = body.onboarding_data or {}
    base_name = (
        onboarding.get("companyName")
        or (onboarding.get("brand") or {}).get("name")
        or onboarding.get("operatorName")
        or ""
    )

    instance = None
    for attempt in range(SUBDOMAIN_ATTEMPTS):
        try:
            instance = await store.create_instance(
                user_id=body.user_id,
                subdomain=generate_subdomain(base_name),
                model_preference=body.model_preference or settings.default_model_preference,
                onboarding_data=onboarding,
            )
            break
        except ConflictError as e:
            if e.instance_id:
                raise
            logger.info(f"[DEPLOY] Subdomain collision (attempt {attempt + 1}), retrying")
    if instance is None:
        raise ConflictError("Could not allocate a unique subdomain")

    pairing_code = None
    try:
        pairing_code = (await pairing.issue_code(body.user_id, instance.id)).code
    except PlatformError as e:
        # the user can generate one later from the dashboard
        logger.error(f"[DEPLOY] Could not issue pairing code for {body.user_id}: {e}")

    logger.info(f"[DEPLOY] Instance {instance.id} queued for user {body.user_id} ({instance.subdomain})")
    return DeployResponse(
        instance_id=instance.id,
        subdomain=instance.subdomain,
        url=instance_url(instance.subdomain, settings.platform_domain),
        status=instance.status,
        pairing_code=pairing_code,
        telegram_bot_username=settings.telegram_bot_username,
    )


@router.get("", response_model=DeployStatusResponse)
async def deploy_status(
    user_id: str = Query(..., min_length=1),
    store: InstanceStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    instance = await store.get_instance_for_user(user_id)
    if instance is None:
        return DeployStatusResponse(exists=False)
    return DeployStatusResponse(
        exists=True,
        instance_id=instance.id,
        status=instance.status,
        subdomain=instance.subdomain,
        url=instance_url(instance.subdomain, settings.platform_domain),
        error_message=instance.error_message,
    )
