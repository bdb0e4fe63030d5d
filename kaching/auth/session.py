"""
Cookie-based session management.

The cookie carries a signed, opaque session token. The token itself is looked
up in the sessions table, which holds the user and the expiry.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import Request, Response
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from ..db.models import utcnow


# Session duration: 7 days
SESSION_MAX_AGE = 7 * 24 * 60 * 60  # seconds
SESSION_COOKIE_NAME = "kaching_session"


class SessionManager:
    """Signs session tokens into cookies and reads them back."""

    def __init__(self, secret_key: str, secure: bool = False):
        """
        Initialize session manager.

        Args:
            secret_key: Secret key for signing cookies
            secure: Send the cookie over HTTPS only
        """
        self._serializer = URLSafeTimedSerializer(secret_key, salt="kaching-session")
        self._secure = secure

    @staticmethod
    def expires_at(now: Optional[datetime] = None) -> datetime:
        """Expiry for a session record created now."""
        return (now or utcnow()) + timedelta(seconds=SESSION_MAX_AGE)

    def create_session(self, response: Response, session_token: str) -> None:
        """
        Set the session cookie for a stored session token.

        Args:
            response: FastAPI response object
            session_token: Opaque token of the session record
        """
        response.set_cookie(
            key=SESSION_COOKIE_NAME,
            value=self._serializer.dumps(session_token),
            max_age=SESSION_MAX_AGE,
            httponly=True,
            samesite="lax",
            secure=self._secure,
        )

    def read_token(self, request: Request) -> Optional[str]:
        """
        Get the session token from the request cookie.

        Returns None when the cookie is missing, tampered with or too old.
        """
        cookie = request.cookies.get(SESSION_COOKIE_NAME)
        if not cookie:
            return None

        try:
            return self._serializer.loads(cookie, max_age=SESSION_MAX_AGE)
        except (BadSignature, SignatureExpired):
            return None

    def clear_session(self, response: Response) -> None:
        response.delete_cookie(
            key=SESSION_COOKIE_NAME,
            httponly=True,
            samesite="lax",
            secure=self._secure,
        )
