"""
Instance Record Store and Config Store.

Owns every write to ``instances`` and ``instance_configs``. Each method
opens its own session from the injected factory so callers (API handlers,
the provisioner worker, the router) never share a transaction across an
await on the container engine.

Status transitions out of ``provisioning`` are conditional updates
(``WHERE status = 'provisioning'``) so two concurrent workers can never move
an instance backwards or write two different outcomes.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from c4g.db.models import Instance, InstanceConfig, InstanceStatus
from c4g.exceptions import ConflictError
from c4g.services.model_catalog import DEFAULT_PREFERENCE
from c4g.utils.crypto import CredentialCipher

logger = logging.getLogger(__name__)

ERROR_MESSAGE_LIMIT = 500

# InstanceConfig column → secret name used by callers
SECRET_FIELDS = {
    "anthropic_api_key": "anthropic_key_encrypted",
    "openai_api_key": "openai_key_encrypted",
    "telegram_bot_token": "telegram_bot_token_encrypted",
}


@dataclass
class InstanceSecrets:
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    telegram_bot_token: Optional[str] = None


@dataclass
class DecryptedConfig:
    instance_id: str
    model_preference: str
    onboarding_data: Optional[Dict[str, Any]]
    secrets: InstanceSecrets


class InstanceStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: CredentialCipher,
    ):
        self._session_factory = session_factory
        self._cipher = cipher

    # ── Create / read ───────────────────────────────────────────────

    async def create_instance(
        self,
        user_id: str,
        subdomain: str,
        model_preference: str = DEFAULT_PREFERENCE,
        onboarding_data: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, Optional[str]]] = None,
    ) -> Instance:
        """Insert an Instance (status=provisioning) and its config in one transaction.

        Raises ConflictError carrying the existing instance id when the user
        already has one; ConflictError without an id when the subdomain is taken.
        """
        instance = Instance(
            id=str(uuid.uuid4()),
            user_id=user_id,
            subdomain=subdomain,
            status=InstanceStatus.PROVISIONING.value,
        )
        config = InstanceConfig(
            instance_id=instance.id,
            model_preference=model_preference,
            onboarding_data=onboarding_data,
        )
        self._apply_secrets(config, secrets or {})

        async with self._session_factory() as db:
            db.add_all([instance, config])
            try:
                await db.commit()
                committed = True
            except IntegrityError:
                await db.rollback()
                committed = False

        if not committed:
            existing = await self.get_instance_for_user(user_id)
            if existing is not None:
                raise ConflictError(
                    "Instance already exists for this user", instance_id=existing.id
                )
            raise ConflictError(f"Subdomain '{subdomain}' is already taken", subdomain=subdomain)

        logger.info("[STORE] Created instance %s for user %s (%s)", instance.id, user_id, subdomain)
        return instance

    async def get_instance(self, instance_id: str) -> Optional[Instance]:
        async with self._session_factory() as db:
            return await db.get(Instance, instance_id)

    async def get_instance_for_user(self, user_id: str) -> Optional[Instance]:
        async with self._session_factory() as db:
            result = await db.execute(select(Instance).where(Instance.user_id == user_id))
            return result.scalar_one_or_none()

    async def next_provisioning(self) -> Optional[Instance]:
        """Oldest instance waiting for the provisioner."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Instance)
                .where(Instance.status == InstanceStatus.PROVISIONING.value)
                .order_by(Instance.created_at.asc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def list_by_status(self, status: str) -> List[Instance]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Instance).where(Instance.status == status).order_by(Instance.created_at)
            )
            return list(result.scalars().all())

    # ── Status transitions ──────────────────────────────────────────

    async def _update(self, instance_id: str, only_if: Optional[str] = None, **values: Any) -> bool:
        stmt = update(Instance).where(Instance.id == instance_id)
        if only_if is not None:
            stmt = stmt.where(Instance.status == only_if)
        values["updated_at"] = datetime.utcnow()
        async with self._session_factory() as db:
            result = await db.execute(stmt.values(**values))
            await db.commit()
            return result.rowcount > 0

    async def mark_running(self, instance_id: str, container_id: str) -> bool:
        """provisioning → running. False when the instance had already left provisioning."""
        return await self._update(
            instance_id,
            only_if=InstanceStatus.PROVISIONING.value,
            status=InstanceStatus.RUNNING.value,
            container_id=container_id,
            error_message=None,
        )

    async def mark_provisioning_failed(self, instance_id: str, message: str) -> bool:
        """provisioning → error."""
        return await self._update(
            instance_id,
            only_if=InstanceStatus.PROVISIONING.value,
            status=InstanceStatus.ERROR.value,
            error_message=message[:ERROR_MESSAGE_LIMIT],
        )

    async def set_status(
        self,
        instance_id: str,
        status: str,
        error_message: Optional[str] = None,
        clear_container: bool = False,
    ) -> bool:
        values: Dict[str, Any] = {
            "status": status,
            "error_message": error_message[:ERROR_MESSAGE_LIMIT] if error_message else None,
        }
        if clear_container:
            values["container_id"] = None
        return await self._update(instance_id, **values)

    async def requeue(self, instance_id: str) -> bool:
        """Send an instance back to the provisioner (after its container was removed)."""
        return await self._update(
            instance_id,
            status=InstanceStatus.PROVISIONING.value,
            container_id=None,
            error_message=None,
        )

    async def delete_instance(self, instance_id: str) -> bool:
        """Delete the Instance row; its config goes with it."""
        async with self._session_factory() as db:
            instance = await db.get(Instance, instance_id)
            if instance is None:
                return False
            await db.delete(instance)
            await db.commit()
        logger.info("[STORE] Deleted instance %s", instance_id)
        return True

    # ── Config ──────────────────────────────────────────────────────

    def _apply_secrets(self, config: InstanceConfig, secrets: Dict[str, Optional[str]]) -> None:
        for name, value in secrets.items():
            column = SECRET_FIELDS.get(name)
            if column is None:
                raise ValueError(f"Unknown secret field: {name}")
            if value is None:
                continue  # not submitted, leave as is
            # empty string clears the field
            setattr(config, column, self._cipher.encrypt(value.strip()))

    async def upsert_config(
        self,
        instance_id: str,
        model_preference: Optional[str] = None,
        onboarding_data: Optional[Dict[str, Any]] = None,
        secrets: Optional[Dict[str, Optional[str]]] = None,
    ) -> None:
        async with self._session_factory() as db:
            config = await db.get(InstanceConfig, instance_id)
            if config is None:
                config = InstanceConfig(
                    instance_id=instance_id,
                    model_preference=model_preference or DEFAULT_PREFERENCE,
                )
                db.add(config)
            if model_preference is not None:
                config.model_preference = model_preference
            if onboarding_data is not None:
                config.onboarding_data = onboarding_data
            self._apply_secrets(config, secrets or {})
            config.updated_at = datetime.utcnow()
            await db.commit()

    async def get_config(self, instance_id: str) -> Optional[DecryptedConfig]:
        """Config with credentials decrypted. Malformed ciphertext raises EncryptionFormatError."""
        async with self._session_factory() as db:
            config = await db.get(InstanceConfig, instance_id)
        if config is None:
            return None
        return DecryptedConfig(
            instance_id=config.instance_id,
            model_preference=config.model_preference or DEFAULT_PREFERENCE,
            onboarding_data=config.onboarding_data,
            secrets=InstanceSecrets(
                anthropic_api_key=self._cipher.decrypt(config.anthropic_key_encrypted),
                openai_api_key=self._cipher.decrypt(config.openai_key_encrypted),
                telegram_bot_token=self._cipher.decrypt(config.telegram_bot_token_encrypted),
            ),
        )
