"""
Inbound Shopee push endpoints.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Request

from ..config import settings
from ..db import Platform, WebhookPayload
from ..dependencies import get_db
from ..errors import AuthenticationError, BadRequestError, NotFoundError
from ..processor import process_webhook
from ..shopee import extract_shop_id, is_timestamp_valid, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks/shopee", tags=["webhooks"])

SIGNATURE_HEADER = "x-shopee-signature"


async def receive(request: Request, default_event: str) -> dict:
    """
    Verify, store and schedule one push.

    Verification and lookup failures are rejected. Anything that goes wrong
    after that is logged and still acknowledged, so Shopee does not redeliver
    immediately.
    """
    authorization = request.headers.get("authorization", "")
    signature = request.headers.get(SIGNATURE_HEADER, "")
    timestamp = request.query_params.get("timestamp", "")
    raw_body = (await request.body()).decode("utf-8", errors="replace")

    if not is_timestamp_valid(timestamp, tolerance=settings.webhook_timestamp_tolerance):
        logger.warning(f"Rejected push with invalid timestamp: {timestamp!r}")
        raise AuthenticationError("Invalid timestamp")

    if not verify_signature(
        settings.shopee_partner_key, authorization, str(request.url), timestamp, raw_body, signature
    ):
        logger.warning("Rejected push with invalid signature")
        raise AuthenticationError("Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise BadRequestError("Invalid JSON")

    event_type = default_event
    if isinstance(payload, dict) and payload.get("event_type"):
        event_type = str(payload["event_type"])

    shopee_shop_id = extract_shop_id(event_type, payload)
    if not shopee_shop_id:
        raise BadRequestError("Missing shop_id")

    db = get_db()
    integration = await db.get_integration_by_shopee_shop_id(shopee_shop_id)
    if integration is None:
        raise NotFoundError("Shop not found")

    try:
        webhook = await db.create_webhook(WebhookPayload(
            shop_id=integration.shop_id,
            platform=Platform.SHOPEE,
            event_type=event_type,
            raw_payload=payload,
            signature=signature,
        ))
        asyncio.create_task(process_webhook(db, webhook.id))
        logger.info(f"Webhook captured: {event_type} for shop {integration.shop_id}")
    except Exception:
        logger.exception(f"Failed to store {event_type} push for shop {integration.shop_id}")

    return {"success": True}


@router.post("/order")
async def order_webhook(request: Request):
    return await receive(request, "order.unknown")


@router.post("/product")
async def product_webhook(request: Request):
    return await receive(request, "product.unknown")
