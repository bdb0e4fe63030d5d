"""
Team management routes - invitations and members of a shop.
"""

import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr

from ..auth import ROLE_NAMES
from ..db import Invitation, User, UserRole, utcnow
from ..dependencies import ShopContext, get_db, require_member, require_owner
from ..email import send_invitation_email
from ..errors import BadRequestError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/shops/{shop_id}/team", tags=["team"])

INVITATION_LIFETIME = timedelta(days=7)
ASSIGNABLE_ROLES = (UserRole.ACCOUNTANT, UserRole.PACKER)


class InviteRequest(BaseModel):
    email: EmailStr
    role: UserRole


class RoleUpdateRequest(BaseModel):
    role: UserRole


class InvitationOut(BaseModel):
    id: str
    email: str
    role: UserRole
    expires_at: datetime
    created_at: datetime

    @classmethod
    def from_invitation(cls, invitation: Invitation) -> "InvitationOut":
        return cls(
            id=invitation.id,
            email=invitation.email,
            role=invitation.role,
            expires_at=invitation.expires_at,
            created_at=invitation.created_at,
        )


def _check_assignable(role: UserRole) -> None:
    if role not in ASSIGNABLE_ROLES:
        raise BadRequestError("Role must be ACCOUNTANT or PACKER")


def _display_name(user: User) -> str:
    return user.name or user.email


async def _send(invitation: Invitation, inviter: User) -> None:
    shop = await get_db().get_shop(invitation.shop_id)
    await send_invitation_email(
        to=invitation.email,
        shop_name=shop.name,
        inviter_name=_display_name(inviter),
        role=ROLE_NAMES[invitation.role],
        token=invitation.token,
    )


async def _get_shop_invitation(shop_id: str, invitation_id: str) -> Invitation:
    invitation = await get_db().get_invitation(invitation_id)
    if invitation is None or invitation.shop_id != shop_id:
        raise NotFoundError("Invitation not found")
    return invitation


# ===== Invitations =====

@router.post("/invitations", status_code=201)
async def invite_member(
    shop_id: str,
    body: InviteRequest,
    ctx: ShopContext = Depends(require_owner)
):
    """Invite an email address to join the shop with a staff role."""
    db = get_db()
    _check_assignable(body.role)
    email = body.email.lower()

    if await db.find_member_by_email(shop_id, email):
        raise ConflictError("User is already a member")

    if await db.find_pending_invitation(shop_id, email):
        raise ConflictError("Invitation already sent to this email")

    invitation = await db.create_invitation(Invitation(
        email=email,
        shop_id=shop_id,
        role=body.role,
        invited_by_id=ctx.user.id,
        expires_at=utcnow() + INVITATION_LIFETIME,
    ))
    await _send(invitation, ctx.user)
    logger.info(f"Invited {email} to shop {shop_id} as {body.role.value}")

    return {
        "success": True,
        "message": "Invitation sent successfully",
        "invitation": InvitationOut.from_invitation(invitation),
    }


@router.get("/invitations")
async def list_invitations(shop_id: str, ctx: ShopContext = Depends(require_owner)):
    """Pending, unexpired invitations, newest first."""
    invitations = await get_db().list_pending_invitations(shop_id)
    return {"invitations": [InvitationOut.from_invitation(i) for i in invitations]}


@router.post("/invitations/{invitation_id}/resend")
async def resend_invitation(
    shop_id: str,
    invitation_id: str,
    ctx: ShopContext = Depends(require_owner)
):
    invitation = await _get_shop_invitation(shop_id, invitation_id)
    if invitation.accepted_at:
        raise BadRequestError("Invitation already accepted")

    invitation = await get_db().extend_invitation(invitation.id, utcnow() + INVITATION_LIFETIME)
    await _send(invitation, ctx.user)

    return {
        "success": True,
        "message": "Invitation resent successfully",
        "invitation": InvitationOut.from_invitation(invitation),
    }


@router.delete("/invitations/{invitation_id}")
async def cancel_invitation(
    shop_id: str,
    invitation_id: str,
    ctx: ShopContext = Depends(require_owner)
):
    invitation = await _get_shop_invitation(shop_id, invitation_id)
    if invitation.accepted_at:
        raise BadRequestError("Cannot cancel accepted invitation")

    await get_db().delete_invitation(invitation.id)
    return {"success": True, "message": "Invitation cancelled"}


# ===== Members =====

@router.get("/members")
async def list_members(shop_id: str, ctx: ShopContext = Depends(require_member)):
    """Team members ordered by role, then join date. Visible to every member."""
    members = await get_db().list_members(shop_id)
    return {
        "members": [
            {**member.model_dump(), "is_current_user": member.user_id == ctx.user.id}
            for member in members
        ]
    }


async def _get_shop_member(shop_id: str, member_id: str):
    member = await get_db().get_member(member_id)
    if member is None or member.shop_id != shop_id:
        raise NotFoundError("Team member not found")
    return member


@router.patch("/members/{member_id}")
async def update_member_role(
    shop_id: str,
    member_id: str,
    body: RoleUpdateRequest,
    ctx: ShopContext = Depends(require_owner)
):
    _check_assignable(body.role)
    member = await _get_shop_member(shop_id, member_id)

    if member.user_id == ctx.user.id:
        raise BadRequestError("Cannot change your own role")
    if member.role == UserRole.OWNER:
        raise BadRequestError("Cannot change owner role")

    updated = await get_db().update_member_role(member.id, body.role)
    logger.info(f"Member {member.id} of shop {shop_id} is now {body.role.value}")
    return {"success": True, "message": "Role updated successfully", "member": updated}


@router.delete("/members/{member_id}")
async def remove_member(
    shop_id: str,
    member_id: str,
    ctx: ShopContext = Depends(require_owner)
):
    member = await _get_shop_member(shop_id, member_id)

    if member.user_id == ctx.user.id:
        raise BadRequestError("Cannot remove yourself from the shop")
    if member.role == UserRole.OWNER:
        raise BadRequestError("Cannot remove shop owner")

    await get_db().remove_member(member.id)
    logger.info(f"Removed member {member.id} from shop {shop_id}")
    return {"success": True, "message": "Team member removed successfully"}

