"""
Shopee integration routes - connect, status, catalog and webhook log.
"""

import asyncio
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from ..auth import Permission
from ..config import settings
from ..crypto import encrypt_token
from ..db import WebhookStatus
from ..dependencies import (
    ShopContext, get_db, get_optional_session, get_shopee_client, require_member,
    require_owner, require_permission
)
from ..errors import BadRequestError, NotFoundError
from ..processor import process_webhook, run_catalog_import
from ..shopee import ShopeeClient, ShopeeClientError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/shops/{shop_id}/shopee", tags=["shopee"])
callback_router = APIRouter(prefix="/api/shopee", tags=["shopee"])

STATE_MAX_AGE = 15 * 60  # seconds
STATE_SALT = "kaching-shopee-state"

require_financials = require_permission(
    Permission.ACCESS_FINANCIALS, "You do not have permission to view orders"
)


def _state_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.session_secret, salt=STATE_SALT)


def build_state(shop_id: str) -> str:
    """Signed state carrying the shop id and a nonce."""
    return _state_serializer().dumps({"shop_id": shop_id, "nonce": secrets.token_hex(16)})


def read_state(state: str) -> Optional[str]:
    """Shop id from a state value, or None when tampered with or too old."""
    try:
        data = _state_serializer().loads(state, max_age=STATE_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return None
    return data.get("shop_id") if isinstance(data, dict) else None


def _app_redirect(path: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.app_url.rstrip('/')}{path}", status_code=303)


# ===== Connection =====

@router.get("/authorize")
async def authorize(
    shop_id: str,
    ctx: ShopContext = Depends(require_owner),
    client: ShopeeClient = Depends(get_shopee_client)
):
    """Send the owner to Shopee's authorization page."""
    url = client.build_authorize_url(settings.shopee_redirect_uri, build_state(shop_id))
    return RedirectResponse(url=url, status_code=303)


@callback_router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    shop_id: Optional[str] = None,
    client: ShopeeClient = Depends(get_shopee_client)
):
    """
    Finish the authorization flow.

    Shopee passes `code` and its own `shop_id`; `state` names our shop.
    Every outcome redirects back to the app.
    """
    db = get_db()

    current = await get_optional_session(request)
    if current is None:
        return _app_redirect("/auth/login?error=unauthorized")

    if not code or not state or not shop_id:
        return _app_redirect("/?error=invalid_callback")

    local_shop_id = read_state(state)
    if local_shop_id is None:
        return _app_redirect("/?error=invalid_state")

    shop = await db.get_shop(local_shop_id)
    if shop is None or shop.owner_id != current.user.id:
        return _app_redirect("/?error=unauthorized")

    try:
        grant = await client.get_access_token(code, shop_id)
    except ShopeeClientError as e:
        logger.error(f"Shopee token exchange failed for shop {local_shop_id}: {e}")
        await client.close()
        return _app_redirect(f"/{local_shop_id}/settings/integrations?error=connection_failed")

    await db.upsert_integration(
        local_shop_id,
        str(shop_id),
        encrypt_token(grant.access_token),
        encrypt_token(grant.refresh_token),
        grant.expires_at,
    )
    logger.info(f"Connected Shopee shop {shop_id} to shop {local_shop_id}")

    # Import runs in the background and closes the client
    asyncio.create_task(run_catalog_import(db, client, local_shop_id))

    return _app_redirect(f"/{local_shop_id}/settings/integrations?success=connected")


@router.get("/status")
async def integration_status(shop_id: str, ctx: ShopContext = Depends(require_owner)):
    integration = await get_db().get_integration(shop_id)
    if integration is None:
        return {
            "connected": False,
            "status": None,
            "last_sync_at": None,
            "failure_count": 0,
            "is_deleted": False,
        }

    return {
        "connected": True,
        "shopee_shop_id": integration.shopee_shop_id,
        "status": integration.status,
        "last_sync_at": integration.last_sync_at,
        "failure_count": integration.failure_count,
        "expires_at": integration.expires_at,
        "is_deleted": not integration.is_active,
        "connected_at": integration.created_at,
    }


@router.post("/disconnect")
async def disconnect(shop_id: str, ctx: ShopContext = Depends(require_owner)):
    """Wipe stored credentials and mark the integration DISCONNECTED."""
    db = get_db()
    integration = await db.get_integration(shop_id)
    if integration is None:
        raise NotFoundError("Shopee integration not found")
    if not integration.is_active:
        raise BadRequestError("Integration already disconnected")

    await db.disconnect_integration(shop_id)
    logger.info(f"Shop {shop_id} disconnected Shopee")
    return {"success": True, "message": "Shopee disconnected successfully"}


@router.post("/import", status_code=202)
async def trigger_import(
    shop_id: str,
    ctx: ShopContext = Depends(require_owner),
    client: ShopeeClient = Depends(get_shopee_client)
):
    """Start a catalog import in the background."""
    integration = await get_db().get_integration(shop_id)
    if integration is None or not integration.is_active:
        await client.close()
        raise BadRequestError("Shopee is not connected")

    asyncio.create_task(run_catalog_import(get_db(), client, shop_id))
    return {"success": True, "message": "Product import started"}


# ===== Catalog =====

@router.get("/products")
async def list_products(
    shop_id: str,
    limit: int = Query(50, ge=1, le=100),
    cursor: Optional[str] = None,
    ctx: ShopContext = Depends(require_member)
):
    """Shopee products, most recently updated first. Visible to every member."""
    try:
        page = await get_db().list_products(shop_id, cursor=cursor, limit=limit)
    except ValueError:
        raise BadRequestError("Invalid cursor")
    return {"products": page.items, "next_cursor": page.next_cursor}


@router.get("/orders")
async def list_orders(
    shop_id: str,
    limit: int = Query(50, ge=1, le=100),
    cursor: Optional[str] = None,
    ctx: ShopContext = Depends(require_financials)
):
    """Shopee orders, newest first."""
    try:
        page = await get_db().list_orders(shop_id, cursor=cursor, limit=limit)
    except ValueError:
        raise BadRequestError("Invalid cursor")
    return {"orders": page.items, "next_cursor": page.next_cursor}


# ===== Webhook Log =====

@router.get("/webhooks")
async def list_webhooks(
    shop_id: str,
    status: Optional[WebhookStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: ShopContext = Depends(require_owner)
):
    webhooks = await get_db().list_webhooks(shop_id, status=status, limit=limit, offset=offset)
    return {"webhooks": webhooks}


@router.post("/webhooks/{webhook_id}/retry", status_code=202)
async def retry_webhook(
    shop_id: str,
    webhook_id: str,
    ctx: ShopContext = Depends(require_owner)
):
    """Give a FAILED webhook one more attempt."""
    db = get_db()
    webhook = await db.get_webhook(webhook_id)
    if webhook is None or webhook.shop_id != shop_id:
        raise NotFoundError("Webhook not found")
    if webhook.status != WebhookStatus.FAILED:
        raise BadRequestError("Only failed webhooks can be retried")

    await db.requeue_webhook(webhook_id)
    asyncio.create_task(process_webhook(db, webhook_id))
    return {"success": True, "message": "Webhook queued for retry"}
