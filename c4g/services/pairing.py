"""
Telegram pairing: short-lived codes that bind a chat to a platform user.

    pending --(approve within TTL)--> approved   (terminal)
    pending --(TTL elapsed, seen on next lookup)--> expired
    pending --(user asks for a new code)--> expired

Usage:
    pairing = PairingService(session_factory, ttl_minutes=15)
    code = await pairing.issue_code(user_id, instance_id)
    result = await pairing.approve(code.code, chat_id="123456")
    assert result.success
"""

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from c4g.db.models import PairingStatus, TelegramPairing
from c4g.exceptions import ConflictError

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
_ISSUE_ATTEMPTS = 5


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


@dataclass
class PairingCode:
    code: str
    user_id: str
    instance_id: Optional[str]
    expires_at: datetime


@dataclass
class PairingResult:
    success: bool
    user_id: Optional[str] = None
    instance_id: Optional[str] = None
    reason: Optional[str] = None  # invalid | expired | already_used


class PairingService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_minutes: int = 15,
    ):
        self._session_factory = session_factory
        self.ttl = timedelta(minutes=ttl_minutes)

    async def issue_code(self, user_id: str, instance_id: Optional[str] = None) -> PairingCode:
        """Create a fresh code for ``user_id``. Outstanding pending codes are expired first."""
        async with self._session_factory() as db:
            await db.execute(
                update(TelegramPairing)
                .where(
                    TelegramPairing.user_id == user_id,
                    TelegramPairing.status == PairingStatus.PENDING.value,
                )
                .values(status=PairingStatus.EXPIRED.value)
            )
            await db.commit()

        for _ in range(_ISSUE_ATTEMPTS):
            pairing = TelegramPairing(
                code=generate_code(),
                user_id=user_id,
                instance_id=instance_id,
                status=PairingStatus.PENDING.value,
                expires_at=datetime.utcnow() + self.ttl,
            )
            async with self._session_factory() as db:
                db.add(pairing)
                try:
                    await db.commit()
                except IntegrityError:
                    # code collision, draw again
                    await db.rollback()
                    continue
            logger.info(f"[PAIRING] Issued code {pairing.code} for user {user_id}")
            return PairingCode(
                code=pairing.code,
                user_id=user_id,
                instance_id=instance_id,
                expires_at=pairing.expires_at,
            )

        raise ConflictError("Could not allocate a unique pairing code")

    async def approve(self, code: str, chat_id: str) -> PairingResult:
        """Bind ``chat_id`` to the code's owner. Succeeds at most once per code."""
        code = (code or "").strip().upper()
        if not code:
            return PairingResult(success=False, reason="invalid")

        async with self._session_factory() as db:
            result = await db.execute(select(TelegramPairing).where(TelegramPairing.code == code))
            pairing = result.scalar_one_or_none()
            if pairing is None:
                return PairingResult(success=False, reason="invalid")
            if pairing.status == PairingStatus.APPROVED.value:
                return PairingResult(success=False, reason="already_used")
            if pairing.status != PairingStatus.PENDING.value:
                return PairingResult(success=False, reason="expired")

            now = datetime.utcnow()
            if now > pairing.expires_at:
                await db.execute(
                    update(TelegramPairing)
                    .where(
                        TelegramPairing.id == pairing.id,
                        TelegramPairing.status == PairingStatus.PENDING.value,
                    )
                    .values(status=PairingStatus.EXPIRED.value)
                )
                await db.commit()
                logger.info(f"[PAIRING] Code {code} expired")
                return PairingResult(success=False, reason="expired")

            outcome = await db.execute(
                update(TelegramPairing)
                .where(
                    TelegramPairing.id == pairing.id,
                    TelegramPairing.status == PairingStatus.PENDING.value,
                )
                .values(
                    status=PairingStatus.APPROVED.value,
                    external_chat_id=str(chat_id),
                    approved_at=now,
                )
            )
            await db.commit()
            if outcome.rowcount == 0:
                return PairingResult(success=False, reason="already_used")

            logger.info(f"[PAIRING] Chat {chat_id} paired with user {pairing.user_id}")
            return PairingResult(
                success=True,
                user_id=pairing.user_id,
                instance_id=pairing.instance_id,
            )

    async def latest_for_chat(self, chat_id: str) -> Optional[TelegramPairing]:
        """Most recent approved pairing for a chat, or None."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(TelegramPairing)
                .where(
                    TelegramPairing.external_chat_id == str(chat_id),
                    TelegramPairing.status == PairingStatus.APPROVED.value,
                )
                .order_by(TelegramPairing.approved_at.desc(), TelegramPairing.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_user_pairing(self, user_id: str) -> Optional[TelegramPairing]:
        """Most recent approved pairing for a user, or None."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(TelegramPairing)
                .where(
                    TelegramPairing.user_id == user_id,
                    TelegramPairing.status == PairingStatus.APPROVED.value,
                )
                .order_by(TelegramPairing.approved_at.desc(), TelegramPairing.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()
