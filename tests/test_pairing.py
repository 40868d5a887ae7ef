"""
Tests for Telegram pairing codes
"""

import re
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, update

from c4g.db.models import PairingStatus, TelegramPairing
from c4g.services.pairing import PairingService, generate_code


@pytest.fixture
def pairing(session_factory) -> PairingService:
    return PairingService(session_factory, ttl_minutes=15)


async def _status(session_factory, code: str) -> str:
    async with session_factory() as db:
        result = await db.execute(select(TelegramPairing.status).where(TelegramPairing.code == code))
        return result.scalar_one()


class TestCodeFormat:
    def test_six_uppercase_alphanumerics(self):
        for _ in range(50):
            assert re.fullmatch(r"[A-Z0-9]{6}", generate_code())


@pytest.mark.asyncio
async def test_issue_code_expires_in_fifteen_minutes(pairing, user_id):
    code = await pairing.issue_code(user_id, "inst-1")

    assert re.fullmatch(r"[A-Z0-9]{6}", code.code)
    remaining = code.expires_at - datetime.utcnow()
    assert timedelta(minutes=14) < remaining <= timedelta(minutes=15)


@pytest.mark.asyncio
async def test_approve_once(pairing, user_id):
    code = await pairing.issue_code(user_id, "inst-1")

    first = await pairing.approve(code.code, "555")
    second = await pairing.approve(code.code, "555")

    assert first.success is True
    assert first.user_id == user_id
    assert first.instance_id == "inst-1"
    assert second.success is False
    assert second.reason == "already_used"


@pytest.mark.asyncio
async def test_lowercase_code_is_accepted(pairing, user_id):
    code = await pairing.issue_code(user_id)
    result = await pairing.approve(f"  {code.code.lower()} ", "777")
    assert result.success is True


@pytest.mark.asyncio
async def test_new_code_invalidates_previous(pairing, session_factory, user_id):
    old = await pairing.issue_code(user_id)
    new = await pairing.issue_code(user_id)

    assert await _status(session_factory, old.code) == PairingStatus.EXPIRED.value
    assert (await pairing.approve(old.code, "42")).success is False
    assert (await pairing.approve(new.code, "42")).success is True


@pytest.mark.asyncio
async def test_expired_code_fails_and_flips_status(pairing, session_factory, user_id):
    code = await pairing.issue_code(user_id)
    async with session_factory() as db:
        await db.execute(
            update(TelegramPairing)
            .where(TelegramPairing.code == code.code)
            .values(expires_at=datetime.utcnow() - timedelta(seconds=1))
        )
        await db.commit()

    result = await pairing.approve(code.code, "42")

    assert result.success is False
    assert result.reason == "expired"
    assert await _status(session_factory, code.code) == PairingStatus.EXPIRED.value


@pytest.mark.asyncio
async def test_unknown_code(pairing):
    result = await pairing.approve("ZZZZZZ", "42")
    assert result.success is False
    assert result.reason == "invalid"


@pytest.mark.asyncio
async def test_latest_approved_pairing_wins(pairing):
    first = await pairing.issue_code("user-old")
    await pairing.approve(first.code, "900")
    second = await pairing.issue_code("user-new")
    await pairing.approve(second.code, "900")

    latest = await pairing.latest_for_chat("900")
    assert latest.user_id == "user-new"

    assert await pairing.latest_for_chat("901") is None
    assert (await pairing.get_user_pairing("user-old")).external_chat_id == "900"
