"""
Invitation lookup and acceptance by token.
"""

import logging

from fastapi import APIRouter, Depends

from ..auth import ROLE_NAMES
from ..db import Invitation, utcnow
from ..dependencies import CurrentSession, get_current_session, get_db
from ..errors import BadRequestError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invitations", tags=["invitations"])


async def _get_open_invitation(token: str) -> Invitation:
    invitation = await get_db().get_invitation_by_token(token)
    if invitation is None:
        raise NotFoundError("Invalid invitation")
    if invitation.accepted_at:
        raise BadRequestError("Invitation already accepted")
    if invitation.is_expired(utcnow()):
        raise BadRequestError("Invitation expired, request a new one")
    return invitation


@router.get("/{token}")
async def get_invitation(token: str):
    """Public preview of an invitation for the accept page."""
    db = get_db()
    invitation = await _get_open_invitation(token)
    shop = await db.get_shop(invitation.shop_id)
    inviter = await db.get_user(invitation.invited_by_id)

    return {
        "email": invitation.email,
        "role": invitation.role,
        "role_name": ROLE_NAMES[invitation.role],
        "shop_id": shop.id,
        "shop_name": shop.name,
        "inviter_name": (inviter.name or inviter.email) if inviter else None,
        "expires_at": invitation.expires_at,
    }


@router.post("/{token}/accept")
async def accept_invitation(token: str, current: CurrentSession = Depends(get_current_session)):
    """Join the shop named by the invitation."""
    db = get_db()
    invitation = await _get_open_invitation(token)

    if await db.get_membership(current.user.id, invitation.shop_id):
        await db.mark_invitation_accepted(invitation.id)
        raise BadRequestError("You are already a member of this shop")

    try:
        membership = await db.accept_invitation(invitation, current.user.id)
    except ConflictError:
        await db.mark_invitation_accepted(invitation.id)
        raise BadRequestError("You are already a member of this shop")
    logger.info(f"User {current.user.id} joined shop {invitation.shop_id} as {membership.role.value}")

    shop = await db.get_shop(invitation.shop_id)
    return {
        "success": True,
        "message": "Invitation accepted successfully",
        "shop_id": shop.id,
        "shop_name": shop.name,
        "role": membership.role,
    }
