"""
Telegram endpoints.

POST /api/telegram/webhook        platform bot updates (secret header)
POST /api/telegram/generate-code  pairing code + deep link (authenticated)
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel

from c4g.api.auth import get_current_user
from c4g.api.deps import get_app_settings, get_pairing, get_router, get_store
from c4g.config import Settings
from c4g.services.instance_store import InstanceStore
from c4g.services.pairing import PairingService
from c4g.services.telegram_router import TelegramRouter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telegram", tags=["Telegram"])


class GenerateCodeResponse(BaseModel):
    code: str
    deep_link: str
    expires_at: str


@router.post("/webhook")
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
    telegram_router: TelegramRouter = Depends(get_router),
    settings: Settings = Depends(get_app_settings),
):
    """
    Always acknowledges once the secret checks out: Telegram retries anything
    that is not a 200, and a failing update would be redelivered forever.
    """
    expected = settings.telegram_webhook_secret
    if not expected or not hmac.compare_digest(x_telegram_bot_api_secret_token or "", expected):
        logger.warning("[TELEGRAM] Webhook call with an invalid secret token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        update = await request.json()
        if isinstance(update, dict):
            await telegram_router.handle_update(update)
    except Exception as e:
        logger.error(f"[TELEGRAM] Error processing update: {e}", exc_info=True)

    return {"ok": True}


@router.post("/generate-code", response_model=GenerateCodeResponse)
async def generate_code(
    current_user=Depends(get_current_user),
    pairing: PairingService = Depends(get_pairing),
    store: InstanceStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    if not settings.telegram_bot_username:
        raise HTTPException(status_code=500, detail="Telegram bot username is not configured")

    instance = await store.get_instance_for_user(current_user.id)
    code = await pairing.issue_code(current_user.id, instance.id if instance else None)
    return GenerateCodeResponse(
        code=code.code,
        deep_link=f"https://t.me/{settings.telegram_bot_username}?start={code.code}",
        expires_at=code.expires_at.isoformat(),
    )
