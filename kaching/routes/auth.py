"""
Authentication routes - registration, login/logout and password reset.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, EmailStr

from ..auth import MIN_PASSWORD_LENGTH, hash_password, verify_password
from ..db import AuthSession, Membership, PasswordResetToken, User, utcnow
from ..dependencies import (
    CurrentSession, client_ip, get_current_session, get_db, get_login_limiter,
    get_session_manager
)
from ..email import send_password_reset_email
from ..errors import AuthenticationError, BadRequestError, ConflictError, RateLimitError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

RESET_TOKEN_LIFETIME = timedelta(hours=1)
RESET_REQUESTED_MESSAGE = "If account exists, reset email has been sent"


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    confirm_password: str
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ResetRequest(BaseModel):
    email: EmailStr


class ResetConfirmRequest(BaseModel):
    token: str
    password: str
    confirm_password: str


class UserOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    image: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(id=user.id, email=user.email, name=user.name, image=user.image)


class MeResponse(BaseModel):
    user: UserOut
    active_shop_id: Optional[str] = None
    shops: List[Membership]


class MessageResponse(BaseModel):
    success: bool = True
    message: str


def _check_new_password(password: str, confirm_password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise BadRequestError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if password != confirm_password:
        raise BadRequestError("Passwords must match")


@router.post("/register", status_code=201)
async def register(body: RegisterRequest):
    """Create an account with email and password."""
    db = get_db()
    _check_new_password(body.password, body.confirm_password)

    email = body.email.lower()
    if await db.get_user_by_email(email):
        raise ConflictError("Email already registered")

    user = await db.create_user(User(
        email=email,
        name=(body.name or "").strip() or None,
        password_hash=hash_password(body.password),
    ))
    logger.info(f"Registered user {user.id}")

    return {
        "success": True,
        "message": "Account created successfully",
        "user": UserOut.from_user(user),
    }


@router.post("/login")
async def login(request: Request, response: Response, body: LoginRequest):
    """Start a session. Attempts are limited per client IP."""
    db = get_db()
    session_manager = get_session_manager()

    limit = get_login_limiter().hit(client_ip(request))
    if not limit.success:
        raise RateLimitError(
            "Too many login attempts. Please try again later.",
            retry_after=limit.retry_after
        )

    user = await db.get_user_by_email(body.email)
    if user is None or not verify_password(body.password, user.password_hash):
        raise AuthenticationError("Invalid email or password")

    memberships = await db.list_user_memberships(user.id)
    session = await db.create_session(AuthSession(
        user_id=user.id,
        expires_at=session_manager.expires_at(),
        active_shop_id=memberships[0].shop_id if memberships else None,
    ))
    session_manager.create_session(response, session.session_token)

    return MeResponse(
        user=UserOut.from_user(user),
        active_shop_id=session.active_shop_id,
        shops=memberships,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request, response: Response):
    """End the current session, if any."""
    session_manager = get_session_manager()
    token = session_manager.read_token(request)
    if token:
        await get_db().delete_session(token)
    session_manager.clear_session(response)
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=MeResponse)
async def me(current: CurrentSession = Depends(get_current_session)):
    memberships = await get_db().list_user_memberships(current.user.id)
    return MeResponse(
        user=UserOut.from_user(current.user),
        active_shop_id=current.session.active_shop_id,
        shops=memberships,
    )


@router.post("/password-reset/request", response_model=MessageResponse)
async def request_password_reset(body: ResetRequest):
    """Email a reset link. The answer is the same whether or not the account exists."""
    db = get_db()
    user = await db.get_user_by_email(body.email)

    if user:
        token = await db.replace_password_reset_token(PasswordResetToken(
            user_id=user.id,
            expires_at=utcnow() + RESET_TOKEN_LIFETIME,
        ))
        await send_password_reset_email(user.email, token.token)

    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/password-reset/confirm", response_model=MessageResponse)
async def confirm_password_reset(response: Response, body: ResetConfirmRequest):
    """Set a new password and sign the user out everywhere."""
    db = get_db()
    _check_new_password(body.password, body.confirm_password)

    token = await db.get_password_reset_token(body.token)
    if token is None:
        raise BadRequestError("Invalid reset link")
    if token.expires_at < utcnow():
        raise BadRequestError("Reset link expired, request a new one")

    revoked = await db.reset_password(token, hash_password(body.password))
    logger.info(f"Password reset for user {token.user_id}, {revoked} sessions revoked")

    get_session_manager().clear_session(response)
    return MessageResponse(message="Password reset successfully")
