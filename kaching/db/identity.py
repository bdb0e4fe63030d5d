"""
User, account, session and token storage.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional, Tuple

from ..errors import ConflictError
from .columns import to_db_datetime
from .models import (
    Account, AuthSession, PasswordResetToken, User, VerificationToken, utcnow
)


class IdentityMixin:
    """Operations consumed by the authentication layer."""

    # ===== User Operations =====

    async def create_user(self, user: User) -> User:
        try:
            await self.execute(
                """
                INSERT INTO users (id, email, name, password_hash, email_verified_at,
                                   image, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user.id,
                    user.email,
                    user.name,
                    user.password_hash,
                    to_db_datetime(user.email_verified_at),
                    user.image,
                    to_db_datetime(user.created_at),
                    to_db_datetime(user.updated_at)
                )
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise
            raise ConflictError("Email already registered") from e
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        row = await self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        return self._to_model(User, row)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        row = await self._fetch_one(
            "SELECT * FROM users WHERE email = ? COLLATE NOCASE", (email,)
        )
        return self._to_model(User, row)

    async def update_user(self, user_id: str, **kwargs) -> Optional[User]:
        if not kwargs:
            return await self.get_user(user_id)

        allowed = {"email", "name", "password_hash", "email_verified_at", "image"}
        updates = []
        values = []

        for key, value in kwargs.items():
            if key not in allowed:
                raise ValueError(f"Unknown user field: {key}")
            updates.append(f"{key} = ?")
            values.append(to_db_datetime(value) if isinstance(value, datetime) else value)

        updates.append("updated_at = ?")
        values.append(to_db_datetime(utcnow()))
        values.append(user_id)

        await self.execute(f"UPDATE users SET {', '.join(updates)} WHERE id = ?", values)
        return await self.get_user(user_id)

    async def delete_user(self, user_id: str) -> bool:
        return await self.execute("DELETE FROM users WHERE id = ?", (user_id,)) > 0

    # ===== Federated Accounts =====

    async def link_account(self, account: Account) -> Account:
        """Attach a provider login to a user. A provider account links to one user only."""
        try:
            await self.execute(
                """
                INSERT INTO accounts (id, user_id, type, provider, provider_account_id,
                                      access_token, refresh_token, expires_at, token_type,
                                      scope, id_token)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account.id, account.user_id, account.type, account.provider,
                    account.provider_account_id, account.access_token, account.refresh_token,
                    account.expires_at, account.token_type, account.scope, account.id_token
                )
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise
            raise ConflictError("Account already linked") from e
        return account

    async def unlink_account(self, provider: str, provider_account_id: str) -> bool:
        rowcount = await self.execute(
            "DELETE FROM accounts WHERE provider = ? AND provider_account_id = ?",
            (provider, provider_account_id)
        )
        return rowcount > 0

    async def get_user_by_account(
        self,
        provider: str,
        provider_account_id: str
    ) -> Optional[User]:
        row = await self._fetch_one(
            """
            SELECT u.* FROM users u
            JOIN accounts a ON a.user_id = u.id
            WHERE a.provider = ? AND a.provider_account_id = ?
            """,
            (provider, provider_account_id)
        )
        return self._to_model(User, row)

    async def list_accounts(self, user_id: str) -> List[Account]:
        rows = await self.query_raw(
            "SELECT * FROM accounts WHERE user_id = ? ORDER BY provider", (user_id,)
        )
        return [self._to_model(Account, row) for row in rows]

    # ===== Sessions =====

    async def create_session(self, session: AuthSession) -> AuthSession:
        await self.execute(
            """
            INSERT INTO sessions (id, session_token, user_id, expires_at, active_shop_id)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                session.id,
                session.session_token,
                session.user_id,
                to_db_datetime(session.expires_at),
                session.active_shop_id
            )
        )
        return session

    async def get_session_and_user(
        self,
        session_token: str,
        now: Optional[datetime] = None
    ) -> Optional[Tuple[AuthSession, User]]:
        """Return the unexpired session for a token together with its user."""
        row = await self._fetch_one(
            "SELECT * FROM sessions WHERE session_token = ? AND expires_at > ?",
            (session_token, to_db_datetime(now or utcnow()))
        )
        if row is None:
            return None
        session = self._to_model(AuthSession, row)
        user = await self.get_user(session.user_id)
        if user is None:
            return None
        return session, user

    async def set_session_shop(self, session_token: str, shop_id: Optional[str]) -> None:
        await self.execute(
            "UPDATE sessions SET active_shop_id = ? WHERE session_token = ?",
            (shop_id, session_token)
        )

    async def delete_session(self, session_token: str) -> bool:
        rowcount = await self.execute(
            "DELETE FROM sessions WHERE session_token = ?", (session_token,)
        )
        return rowcount > 0

    async def delete_user_sessions(self, user_id: str) -> int:
        return await self.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))

    async def cleanup_expired_sessions(self, now: Optional[datetime] = None) -> int:
        return await self.execute(
            "DELETE FROM sessions WHERE expires_at <= ?",
            (to_db_datetime(now or utcnow()),)
        )

    # ===== Verification Tokens =====

    async def create_verification_token(self, token: VerificationToken) -> VerificationToken:
        await self.execute(
            "INSERT INTO verification_tokens (identifier, token, expires_at) VALUES (?, ?, ?)",
            (token.identifier, token.token, to_db_datetime(token.expires_at))
        )
        return token

    async def use_verification_token(
        self,
        identifier: str,
        token: str
    ) -> Optional[VerificationToken]:
        """Consume a verification token. Returns it (possibly expired) or None."""
        async with self.transaction("IMMEDIATE"):
            row = await self._fetch_one(
                "SELECT * FROM verification_tokens WHERE identifier = ? AND token = ?",
                (identifier, token)
            )
            if row is None:
                return None
            await self.execute(
                "DELETE FROM verification_tokens WHERE identifier = ? AND token = ?",
                (identifier, token)
            )
        return self._to_model(VerificationToken, row)

    # ===== Password Reset Tokens =====

    async def replace_password_reset_token(self, token: PasswordResetToken) -> PasswordResetToken:
        """Store a reset token, dropping any earlier token of the same user."""
        async with self.transaction():
            await self.execute(
                "DELETE FROM password_reset_tokens WHERE user_id = ?", (token.user_id,)
            )
            await self.execute(
                """
                INSERT INTO password_reset_tokens (id, user_id, token, expires_at, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    token.id,
                    token.user_id,
                    token.token,
                    to_db_datetime(token.expires_at),
                    to_db_datetime(token.created_at)
                )
            )
        return token

    async def get_password_reset_token(self, token: str) -> Optional[PasswordResetToken]:
        row = await self._fetch_one(
            "SELECT * FROM password_reset_tokens WHERE token = ?", (token,)
        )
        return self._to_model(PasswordResetToken, row)

    async def reset_password(self, token: PasswordResetToken, password_hash: str) -> int:
        """
        Apply a new password hash, consume the token and end every session.

        Returns the number of sessions that were revoked.
        """
        async with self.transaction("IMMEDIATE"):
            await self.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (password_hash, to_db_datetime(utcnow()), token.user_id)
            )
            await self.execute(
                "DELETE FROM password_reset_tokens WHERE id = ?", (token.id,)
            )
            revoked = await self.execute(
                "DELETE FROM sessions WHERE user_id = ?", (token.user_id,)
            )
        return revoked
