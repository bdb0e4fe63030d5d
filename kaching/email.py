"""
Outbound email.

Messages are written to the log instead of being delivered.
"""

import logging

from .config import settings

logger = logging.getLogger(__name__)


def password_reset_link(token: str) -> str:
    return f"{settings.app_url.rstrip('/')}/auth/reset-password?token={token}"


def invitation_link(token: str) -> str:
    return f"{settings.app_url.rstrip('/')}/invitations/accept?token={token}"


async def send_password_reset_email(email: str, token: str) -> None:
    logger.info(
        "Password reset email\n"
        f"To: {email}\n"
        "Subject: Reset your Kaching password\n"
        f"Reset link: {password_reset_link(token)}\n"
        "This link will expire in 1 hour."
    )


async def send_invitation_email(
    to: str,
    shop_name: str,
    inviter_name: str,
    role: str,
    token: str
) -> None:
    logger.info(
        "Team invitation email\n"
        f"To: {to}\n"
        f"Subject: You've been invited to join {shop_name}\n"
        f'{inviter_name} has invited you to join their shop "{shop_name}" as a {role}.\n'
        f"Accept: {invitation_link(token)}\n"
        "This invitation will expire in 7 days."
    )
