"""
Routes package.
"""

from .auth import router as auth_router
from .invitations import router as invitations_router
from .shopee import callback_router as shopee_callback_router
from .shopee import router as shopee_router
from .shops import router as shops_router
from .team import router as team_router
from .webhooks import router as webhooks_router

__all__ = [
    "auth_router",
    "invitations_router",
    "shopee_callback_router",
    "shopee_router",
    "shops_router",
    "team_router",
    "webhooks_router",
]
