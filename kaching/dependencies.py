"""
FastAPI dependency injection.
Global database, session manager and rate limiter, plus auth and
shop-membership guards.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from .auth import ROLE_PERMISSIONS, Permission, SessionManager, SlidingWindowLimiter
from .config import settings
from .db import AuthSession, ShopUser, SQLiteDatabase, User, UserRole
from .errors import AppError, AuthenticationError, PermissionDeniedError
from .shopee import ShopeeClient

LOGIN_ATTEMPTS = 5
LOGIN_WINDOW = 15 * 60  # seconds


# Global instances (initialized on startup)
_db: Optional[SQLiteDatabase] = None
_session_manager: Optional[SessionManager] = None
_login_limiter: Optional[SlidingWindowLimiter] = None


async def init_dependencies():
    """Initialize global dependencies. Called on app startup."""
    global _db, _session_manager, _login_limiter

    _db = SQLiteDatabase(settings.database_path, settings.webhook_max_retries)
    await _db.initialize()

    _session_manager = SessionManager(settings.session_secret, secure=settings.secure_cookies)
    _login_limiter = SlidingWindowLimiter(LOGIN_ATTEMPTS, LOGIN_WINDOW)


async def close_dependencies():
    """Close global dependencies. Called on app shutdown."""
    global _db
    if _db:
        await _db.close()
        _db = None


def get_db() -> SQLiteDatabase:
    """Get the database instance."""
    if _db is None:
        raise RuntimeError("Database not initialized")
    return _db


def get_session_manager() -> SessionManager:
    """Get the session manager instance."""
    if _session_manager is None:
        raise RuntimeError("Session manager not initialized")
    return _session_manager


def get_login_limiter() -> SlidingWindowLimiter:
    if _login_limiter is None:
        raise RuntimeError("Rate limiter not initialized")
    return _login_limiter


def get_shopee_client() -> ShopeeClient:
    """A fresh Shopee client; callers close it."""
    if not settings.shopee_configured:
        raise AppError("Shopee integration is not configured", status_code=503)
    return ShopeeClient(
        settings.shopee_partner_id,
        settings.shopee_partner_key,
        settings.shopee_api_base_url,
    )


def client_ip(request: Request) -> str:
    """
    Address of the caller.

    X-Forwarded-For is only read when the peer is a configured trusted proxy;
    the rightmost hop that is not itself a trusted proxy is used.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = settings.trusted_proxy_hosts
    forwarded = request.headers.get("x-forwarded-for")
    if not forwarded or peer not in trusted:
        return peer

    for hop in reversed(forwarded.split(",")):
        hop = hop.strip()
        if hop and hop not in trusted:
            return hop
    return peer


# ===== Auth Guards =====

@dataclass
class CurrentSession:
    """The authenticated session record and its user."""
    session: AuthSession
    user: User


@dataclass
class ShopContext:
    """An authenticated user acting inside one shop."""
    session: AuthSession
    user: User
    membership: ShopUser

    @property
    def shop_id(self) -> str:
        return self.membership.shop_id

    @property
    def role(self) -> UserRole:
        return self.membership.role


async def get_optional_session(request: Request) -> Optional[CurrentSession]:
    """The caller's session, or None when not signed in."""
    token = get_session_manager().read_token(request)
    if not token:
        return None

    found = await get_db().get_session_and_user(token)
    if found is None:
        return None

    session, user = found
    return CurrentSession(session=session, user=user)


async def get_current_session(request: Request) -> CurrentSession:
    """
    Dependency that requires authentication.

    The cookie signature must be valid and the session record unexpired.
    """
    current = await get_optional_session(request)
    if current is None:
        raise AuthenticationError("Not authenticated")
    return current


async def get_current_user(current: CurrentSession = Depends(get_current_session)) -> User:
    return current.user


async def require_member(
    shop_id: str,
    current: CurrentSession = Depends(get_current_session)
) -> ShopContext:
    """Dependency for routes under /{shop_id}: caller must belong to the shop."""
    membership = await get_db().get_membership(current.user.id, shop_id)
    if membership is None:
        raise PermissionDeniedError("You are not a member of this shop")
    return ShopContext(session=current.session, user=current.user, membership=membership)


async def require_owner(ctx: ShopContext = Depends(require_member)) -> ShopContext:
    if ctx.role != UserRole.OWNER:
        raise PermissionDeniedError("You must be a shop owner to perform this action")
    return ctx


def require_permission(permission: Permission, message: str):
    """Build a dependency that checks a role permission inside the shop."""

    async def dependency(ctx: ShopContext = Depends(require_member)) -> ShopContext:
        if not ROLE_PERMISSIONS[ctx.role][permission.value]:
            raise PermissionDeniedError(message)
        return ctx

    return dependency
