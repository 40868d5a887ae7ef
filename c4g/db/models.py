"""
Database models for the Claw4Growth platform.

- User / Subscription: identity and billing tier
- Instance: one provisioned agent deployment per user
- InstanceConfig: model choice, onboarding data and encrypted credentials
- TelegramPairing: short-lived code binding a Telegram chat to a user
"""

from datetime import datetime
from enum import Enum
from typing import Optional
import uuid

from sqlalchemy import (
    String, Text, DateTime, Boolean, ForeignKey, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, Mapped, mapped_column, relationship

Base = declarative_base()


class InstanceStatus(str, Enum):
    PROVISIONING = "provisioning"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"
    DELETED = "deleted"


class PairingStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXPIRED = "expired"


class Tier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Subscription(Base):
    """Stripe subscription mirror. One row per user."""
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)
    stripe_price_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active")  # active | canceled | past_due | unpaid
    tier: Mapped[str] = mapped_column(String(20), default=Tier.PRO.value)
    current_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    current_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Instance(Base):
    """A provisioned agent container assigned to a user."""
    __tablename__ = "instances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    subdomain: Mapped[str] = mapped_column(String(63), nullable=False)
    # provisioning | running | stopped | error | deleted
    status: Mapped[str] = mapped_column(String(20), default=InstanceStatus.PROVISIONING.value)
    container_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    config: Mapped[Optional["InstanceConfig"]] = relationship(
        "InstanceConfig",
        back_populates="instance",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_instances_user_id"),
        UniqueConstraint("subdomain", name="uq_instances_subdomain"),
        Index("ix_instances_status_created", "status", "created_at"),
    )


class InstanceConfig(Base):
    """Per-instance configuration. Credential columns hold ``enc:`` ciphertext only."""
    __tablename__ = "instance_configs"

    instance_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("instances.id", ondelete="CASCADE"), primary_key=True
    )
    model_preference: Mapped[str] = mapped_column(String(50), default="minimax")
    onboarding_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    anthropic_key_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    openai_key_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    telegram_bot_token_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    instance: Mapped["Instance"] = relationship("Instance", back_populates="config")


class TelegramPairing(Base):
    """Pairing code issued from the dashboard, redeemed via /start <code>."""
    __tablename__ = "telegram_pairings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    code: Mapped[str] = mapped_column(String(12), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    instance_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    external_chat_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=PairingStatus.PENDING.value)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_telegram_pairings_user_status", "user_id", "status"),
        Index("ix_telegram_pairings_chat_status", "external_chat_id", "status"),
    )
