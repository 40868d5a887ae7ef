"""
Billing endpoints.

POST /api/billing/webhook  Stripe webhook (no auth, verified by signature)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from c4g.api.deps import get_billing
from c4g.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None),
    billing: BillingService = Depends(get_billing),
):
    payload = await request.body()
    event = billing.verify_webhook(payload, stripe_signature)
    if event is None:
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        await billing.handle_event(event)
    except Exception as e:
        # acknowledged anyway; Stripe would otherwise keep redelivering
        logger.error(f"Stripe event {event.get('id')} ({event.get('type')}) failed: {e}", exc_info=True)

    return {"received": True}
