"""
Tests for Stripe webhook handling and tier lookup
"""

import hashlib
import hmac
import json
import time

import pytest
from sqlalchemy import select

from c4g.db.models import Subscription, User
from c4g.services.billing_service import BillingService


def _sign(payload: bytes, secret: str, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "object": "event", "type": event_type, "data": {"object": obj}}


def _subscription(status: str = "active", price: str = "price_pro") -> dict:
    return {
        "id": "sub_1",
        "status": status,
        "items": {"data": [{
            "price": {"id": price},
            "current_period_start": 1_700_000_000,
            "current_period_end": 1_702_592_000,
        }]},
    }


@pytest.fixture
def billing(session_factory, settings) -> BillingService:
    return BillingService(session_factory, settings)


async def _subscription_row(session_factory, user_id: str) -> Subscription:
    async with session_factory() as db:
        result = await db.execute(select(Subscription).where(Subscription.user_id == user_id))
        return result.scalar_one()


class TestVerifyWebhook:
    def test_valid_signature(self, billing):
        payload = json.dumps(_event("checkout.session.completed", {"id": "cs_1"})).encode()
        event = billing.verify_webhook(payload, _sign(payload, "whsec_test"))
        assert event["type"] == "checkout.session.completed"

    def test_wrong_secret(self, billing):
        payload = json.dumps(_event("checkout.session.completed", {"id": "cs_1"})).encode()
        assert billing.verify_webhook(payload, _sign(payload, "whsec_other")) is None

    def test_missing_header(self, billing):
        assert billing.verify_webhook(b"{}", None) is None

    def test_rejects_when_secret_unset(self, session_factory, settings):
        service = BillingService(session_factory, settings.model_copy(update={"stripe_webhook_secret": None}))
        payload = b"{}"
        assert service.verify_webhook(payload, _sign(payload, "whsec_test")) is None


def test_tier_for_price(billing):
    assert billing.tier_for_price("price_enterprise") == "enterprise"
    assert billing.tier_for_price("price_pro") == "pro"
    assert billing.tier_for_price(None) == "pro"


@pytest.mark.asyncio
async def test_checkout_creates_active_subscription(billing, session_factory):
    user_id = await billing.handle_event(_event("checkout.session.completed", {
        "id": "cs_1",
        "customer": "cus_1",
        "subscription": "sub_1",
        "metadata": {"user_id": "user-1"},
    }))

    assert user_id == "user-1"
    row = await _subscription_row(session_factory, "user-1")
    assert row.status == "active"
    assert row.stripe_customer_id == "cus_1"
    assert row.tier == "pro"
    assert await billing.tier_for_user("user-1") == "pro"


@pytest.mark.asyncio
async def test_checkout_resolves_user_by_email(billing, session_factory):
    async with session_factory() as db:
        db.add(User(id="user-2", email="ada@acme.test"))
        await db.commit()

    user_id = await billing.handle_event(_event("checkout.session.completed", {
        "id": "cs_2",
        "customer": "cus_2",
        "subscription": "sub_2",
        "customer_details": {"email": "ada@acme.test"},
    }))

    assert user_id == "user-2"


@pytest.mark.asyncio
async def test_checkout_without_user_is_ignored(billing):
    assert await billing.handle_event(_event("checkout.session.completed", {"id": "cs_3"})) is None


@pytest.mark.asyncio
async def test_upgrade_to_enterprise(billing):
    await billing.handle_event(_event("checkout.session.completed", {
        "id": "cs_1", "customer": "cus_1", "subscription": "sub_1",
        "metadata": {"user_id": "user-1"},
    }))

    await billing.handle_event(_event("customer.subscription.updated", _subscription(price="price_enterprise")))

    assert await billing.tier_for_user("user-1") == "enterprise"


@pytest.mark.asyncio
@pytest.mark.parametrize("stripe_status,stored", [
    ("trialing", "active"),
    ("past_due", "past_due"),
    ("incomplete_expired", "unpaid"),
])
async def test_subscription_status_mapping(billing, session_factory, stripe_status, stored):
    await billing.handle_event(_event("checkout.session.completed", {
        "id": "cs_1", "customer": "cus_1", "subscription": "sub_1",
        "metadata": {"user_id": "user-1"},
    }))

    await billing.handle_event(_event("customer.subscription.updated", _subscription(status=stripe_status)))

    assert (await _subscription_row(session_factory, "user-1")).status == stored


@pytest.mark.asyncio
async def test_deleted_subscription_has_no_tier(billing, session_factory):
    await billing.handle_event(_event("checkout.session.completed", {
        "id": "cs_1", "customer": "cus_1", "subscription": "sub_1",
        "metadata": {"user_id": "user-1"},
    }))

    await billing.handle_event(_event("customer.subscription.deleted", {"id": "sub_1"}))

    assert (await _subscription_row(session_factory, "user-1")).status == "canceled"
    assert await billing.tier_for_user("user-1") is None


@pytest.mark.asyncio
async def test_unknown_subscription_and_event(billing):
    assert await billing.handle_event(_event("customer.subscription.updated", _subscription())) is None
    assert await billing.handle_event(_event("invoice.paid", {"id": "in_1"})) is None
