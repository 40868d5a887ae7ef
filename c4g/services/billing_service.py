"""
Stripe billing sync.

Keeps ``subscriptions`` in step with Stripe webhooks and answers which
resource tier a user is on. The orchestrator asks for the tier every time it
creates a container, so a plan change takes effect on the next recreate.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from c4g.db.models import Subscription, Tier, User

logger = logging.getLogger(__name__)

HANDLED_EVENTS = (
    "checkout.session.completed",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)

# Stripe subscription status → stored status
_STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
}


def _ts(value: Optional[int]) -> Optional[datetime]:
    return datetime.utcfromtimestamp(value) if value else None


def _first_item(subscription: Any) -> Optional[Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else None


class BillingService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings):
        self._session_factory = session_factory
        self.settings = settings

    def _client(self) -> Optional[stripe.StripeClient]:
        if not self.settings.stripe_secret_key:
            return None
        return stripe.StripeClient(self.settings.stripe_secret_key)

    def verify_webhook(self, payload: bytes, sig_header: Optional[str]) -> Optional[dict]:
        """Verify a Stripe webhook signature and return the event, or None if invalid."""
        if not self.settings.stripe_webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET not set, rejecting webhook")
            return None
        if not sig_header:
            return None
        try:
            event = stripe.Webhook.construct_event(
                payload, sig_header, self.settings.stripe_webhook_secret
            )
        except stripe.SignatureVerificationError:
            logger.warning("Stripe webhook signature verification failed")
            return None
        except ValueError:
            logger.warning("Stripe webhook payload is not valid JSON")
            return None
        return event

    def tier_for_price(self, price_id: Optional[str]) -> str:
        if price_id and price_id == self.settings.stripe_enterprise_price_id:
            return Tier.ENTERPRISE.value
        return Tier.PRO.value

    async def tier_for_user(self, user_id: str) -> Optional[str]:
        """Tier of the user's active subscription, or None."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Subscription).where(Subscription.user_id == user_id)
            )
            sub = result.scalar_one_or_none()
        if sub is None or sub.status != "active":
            return None
        return sub.tier

    # ── Events ──────────────────────────────────────────────────────

    async def handle_event(self, event: Dict[str, Any]) -> Optional[str]:
        """Apply one Stripe event. Returns the affected user id, if any."""
        event_type = event.get("type")
        obj = event["data"]["object"]
        if event_type == "checkout.session.completed":
            return await self._checkout_completed(obj)
        if event_type == "customer.subscription.updated":
            return await self._subscription_changed(obj, deleted=False)
        if event_type == "customer.subscription.deleted":
            return await self._subscription_changed(obj, deleted=True)
        logger.debug("Ignoring Stripe event %s", event_type)
        return None

    async def _user_for_checkout(self, session: Any) -> Optional[str]:
        metadata = session.get("metadata") or {}
        if metadata.get("user_id"):
            return metadata["user_id"]
        email = session.get("customer_email") or (session.get("customer_details") or {}).get("email")
        if not email:
            return None
        async with self._session_factory() as db:
            result = await db.execute(select(User.id).where(User.email == email))
            return result.scalar_one_or_none()

    async def _checkout_completed(self, session: Any) -> Optional[str]:
        user_id = await self._user_for_checkout(session)
        if not user_id:
            logger.error("Checkout session %s has no resolvable user", session.get("id"))
            return None

        subscription_id = session.get("subscription")
        values: Dict[str, Any] = {
            "stripe_customer_id": session.get("customer"),
            "stripe_subscription_id": subscription_id,
            "status": "active",
            "current_period_start": datetime.utcnow(),
        }

        client = self._client()
        if client and subscription_id:
            subscription = await asyncio.to_thread(client.subscriptions.retrieve, subscription_id)
            item = _first_item(subscription)
            if item is not None:
                values["stripe_price_id"] = item["price"]["id"]
                values["current_period_start"] = _ts(item.get("current_period_start")) or values["current_period_start"]
                values["current_period_end"] = _ts(item.get("current_period_end"))

        values["tier"] = self.tier_for_price(values.get("stripe_price_id"))
        await self._upsert(user_id, values)
        logger.info(f"Subscription created for user {user_id}")
        return user_id

    async def _subscription_changed(self, subscription: Any, deleted: bool) -> Optional[str]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Subscription).where(Subscription.stripe_subscription_id == subscription.get("id"))
            )
            existing = result.scalar_one_or_none()
            if existing is None:
                logger.warning("No local subscription for %s", subscription.get("id"))
                return None

            if deleted:
                existing.status = "canceled"
            else:
                existing.status = _STATUS_MAP.get(subscription.get("status"), "unpaid")
                item = _first_item(subscription)
                if item is not None:
                    price_id = (item.get("price") or {}).get("id")
                    if price_id:
                        existing.stripe_price_id = price_id
                        existing.tier = self.tier_for_price(price_id)
                    existing.current_period_start = _ts(item.get("current_period_start")) or existing.current_period_start
                    existing.current_period_end = _ts(item.get("current_period_end")) or existing.current_period_end
            existing.updated_at = datetime.utcnow()
            await db.commit()
            user_id = existing.user_id

        logger.info(f"Subscription {'canceled' if deleted else 'updated'} for user {user_id}")
        return user_id

    async def _upsert(self, user_id: str, values: Dict[str, Any]) -> None:
        async with self._session_factory() as db:
            result = await db.execute(select(Subscription).where(Subscription.user_id == user_id))
            sub = result.scalar_one_or_none()
            if sub is None:
                sub = Subscription(user_id=user_id)
                db.add(sub)
            for key, value in values.items():
                if value is not None:
                    setattr(sub, key, value)
            sub.updated_at = datetime.utcnow()
            await db.commit()
