"""
Authentication module.
"""

from .password import MIN_PASSWORD_LENGTH, hash_password, verify_password
from .permissions import (
    ROLE_DESCRIPTIONS, ROLE_NAMES, ROLE_PERMISSIONS, Permission, has_permission
)
from .ratelimit import RateLimitResult, SlidingWindowLimiter
from .session import SESSION_COOKIE_NAME, SESSION_MAX_AGE, SessionManager

__all__ = [
    "MIN_PASSWORD_LENGTH",
    "hash_password",
    "verify_password",
    "Permission",
    "ROLE_PERMISSIONS",
    "ROLE_DESCRIPTIONS",
    "ROLE_NAMES",
    "has_permission",
    "RateLimitResult",
    "SlidingWindowLimiter",
    "SessionManager",
    "SESSION_COOKIE_NAME",
    "SESSION_MAX_AGE",
]
