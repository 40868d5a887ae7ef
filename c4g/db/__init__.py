from c4g.db.models import (
    Base, User, Subscription,
    Instance, InstanceConfig, InstanceStatus,
    TelegramPairing, PairingStatus, Tier,
)
from c4g.db.database import create_engine_and_sessionmaker, get_db, init_db, drop_db

__all__ = [
    "Base",
    "User",
    "Subscription",
    "Instance",
    "InstanceConfig",
    "InstanceStatus",
    "TelegramPairing",
    "PairingStatus",
    "Tier",
    "create_engine_and_sessionmaker",
    "get_db",
    "init_db",
    "drop_db",
]
