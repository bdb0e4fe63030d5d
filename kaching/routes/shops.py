"""
Shop (tenant) routes.
"""

import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..auth import ROLE_PERMISSIONS
from ..db import ShopCreate
from ..dependencies import CurrentSession, ShopContext, get_current_session, get_db, require_member
from ..errors import BadRequestError, NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/shops", tags=["shops"])

TIN_PATTERN = re.compile(r"^\d{12}$")


class ShopCreateRequest(BaseModel):
    name: str
    tin_number: str
    business_address: str
    contact_number: Optional[str] = None


def validate_shop(body: ShopCreateRequest) -> ShopCreate:
    """Trim and check the fields of a new shop."""
    name = body.name.strip()
    tin_number = body.tin_number.strip()
    address = body.business_address.strip()
    contact = (body.contact_number or "").strip() or None

    if not name:
        raise BadRequestError("Shop name is required")
    if not TIN_PATTERN.match(tin_number):
        raise BadRequestError("TIN must be 12 digits")
    if not address:
        raise BadRequestError("Business address is required")

    return ShopCreate(
        name=name,
        tin_number=tin_number,
        business_address=address,
        contact_number=contact,
    )


@router.post("", status_code=201)
async def create_shop(
    body: ShopCreateRequest,
    current: CurrentSession = Depends(get_current_session)
):
    """Create a shop owned by the caller and make it the active shop."""
    db = get_db()
    shop = await db.create_shop_with_owner(validate_shop(body), current.user.id)
    await db.set_session_shop(current.session.session_token, shop.id)
    logger.info(f"User {current.user.id} created shop {shop.id}")

    return {"success": True, "message": "Shop created successfully", "shop": shop}


@router.get("")
async def list_shops(current: CurrentSession = Depends(get_current_session)):
    """Shops the caller belongs to, with role and member count."""
    memberships = await get_db().list_user_memberships(current.user.id)
    return {"shops": memberships, "active_shop_id": current.session.active_shop_id}


@router.post("/{shop_id}/switch")
async def switch_shop(shop_id: str, ctx: ShopContext = Depends(require_member)):
    await get_db().set_session_shop(ctx.session.session_token, shop_id)
    return {"success": True, "message": "Shop switched successfully", "active_shop_id": shop_id}


@router.get("/{shop_id}")
async def get_shop(shop_id: str, ctx: ShopContext = Depends(require_member)):
    shop = await get_db().get_shop(shop_id)
    if shop is None:
        raise NotFoundError("Shop not found")
    return {
        "shop": shop,
        "role": ctx.role,
        "permissions": ROLE_PERMISSIONS[ctx.role],
    }
