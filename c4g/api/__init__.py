from c4g.api.auth import get_current_user
from c4g.api.billing import router as billing_router
from c4g.api.deploy import router as deploy_router
from c4g.api.exceptions import register_exception_handlers
from c4g.api.instances import router as instances_router
from c4g.api.telegram import router as telegram_router

__all__ = [
    "billing_router",
    "deploy_router",
    "instances_router",
    "telegram_router",
    "get_current_user",
    "register_exception_handlers",
]
