"""
Processing of stored webhook payloads.

Each record moves PENDING -> PROCESSING -> COMPLETED, or to FAILED with
retry_count incremented. Records that used up their retries are never
claimed again.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..db import Order, Product, SQLiteDatabase, WebhookPayload, utcnow
from ..shopee import from_shopee_amount

logger = logging.getLogger(__name__)


class WebhookPayloadError(ValueError):
    """Payload is missing a field needed to apply it."""
    pass


def _field(payload: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Read a field from the payload root, falling back to its `data` object."""
    if key in payload and payload[key] is not None:
        return payload[key]
    data = payload.get("data")
    if isinstance(data, dict) and data.get(key) is not None:
        return data[key]
    return default


def _from_epoch(value: Any) -> datetime:
    if value is None:
        return utcnow()
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_image(payload: Dict[str, Any]) -> Optional[str]:
    images = _field(payload, "images")
    if isinstance(images, list) and images:
        return images[0]
    return None


# ===== Orders =====

def order_from_payload(webhook: WebhookPayload) -> Order:
    payload = webhook.raw_payload
    order_id = _field(payload, "order_id") or _field(payload, "order_sn")
    if not order_id:
        raise WebhookPayloadError("Order payload has no order_id")

    return Order(
        shop_id=webhook.shop_id,
        platform=webhook.platform,
        shopee_order_id=str(order_id),
        order_number=str(_field(payload, "order_sn", order_id)),
        total_amount=from_shopee_amount(_field(payload, "total_amount")),
        customer_name=_field(payload, "buyer_username") or "Unknown",
        customer_email=_field(payload, "buyer_email"),
        customer_phone=_field(payload, "buyer_phone"),
        shipping_address=_field(payload, "shipping_address"),
        order_date=_from_epoch(_field(payload, "create_time")),
        items=_field(payload, "items", []),
        status=str(_field(payload, "order_status", "UNKNOWN")),
    )


async def apply_order_event(db: SQLiteDatabase, webhook: WebhookPayload) -> Order:
    order = await db.upsert_order(order_from_payload(webhook))
    logger.info(f"Order {webhook.event_type}: {order.order_number} ({order.status})")
    return order


# ===== Products =====

async def apply_product_event(db: SQLiteDatabase, webhook: WebhookPayload) -> Optional[Product]:
    payload = webhook.raw_payload
    event_type = webhook.event_type
    item_id = _field(payload, "item_id")
    if not item_id:
        raise WebhookPayloadError("Product payload has no item_id")
    item_id = str(item_id)

    existing = await db.get_product_by_external_id(webhook.shop_id, item_id)

    if existing is None:
        if event_type == "product.deleted":
            logger.info(f"Ignoring delete of unknown product {item_id}")
            return None

        product = await db.create_product(Product(
            shop_id=webhook.shop_id,
            platform=webhook.platform,
            shopee_product_id=item_id,
            name=_field(payload, "item_name") or "Unknown Product",
            sku=_field(payload, "model_sku"),
            stock=int(_field(payload, "stock", 0)),
            price=from_shopee_amount(_field(payload, "price")),
            image_url=_first_image(payload),
        ))
        logger.info(f"Created product: {product.name}")
        return product

    if event_type == "product.deleted":
        await db.delete_product(existing.id)
        logger.info(f"Deleted product: {existing.name}")
        return None

    updates: Dict[str, Any] = {}
    stock = _field(payload, "stock")
    price = _field(payload, "price")

    if event_type == "product.stock_updated" and stock is not None:
        updates["stock"] = int(stock)

    if event_type == "product.price_updated" and price is not None:
        updates["price"] = from_shopee_amount(price)

    if event_type == "product.updated":
        if stock is not None:
            updates["stock"] = int(stock)
        if price is not None:
            updates["price"] = from_shopee_amount(price)
        if _field(payload, "item_name"):
            updates["name"] = _field(payload, "item_name")
        if _field(payload, "model_sku"):
            updates["sku"] = _field(payload, "model_sku")
        if _first_image(payload):
            updates["image_url"] = _first_image(payload)

    product = await db.update_product(existing.id, **updates)
    logger.info(f"Updated product: {product.name} ({', '.join(updates) or 'no changes'})")
    return product


# ===== Dispatch =====

async def dispatch(db: SQLiteDatabase, webhook: WebhookPayload) -> None:
    event_type = webhook.event_type or ""
    if event_type.startswith("order"):
        await apply_order_event(db, webhook)
    elif event_type.startswith("product") or event_type.startswith("inventory"):
        await apply_product_event(db, webhook)
    else:
        logger.info(f"No handler for event {event_type}, marking as processed")


async def process_webhook(db: SQLiteDatabase, webhook_id: str) -> Optional[WebhookPayload]:
    """
    Claim and apply one webhook record.

    Returns the final record, or None when the record could not be claimed
    (unknown, already processing/completed, or out of retries).
    """
    webhook = await db.claim_webhook(webhook_id)
    if webhook is None:
        logger.debug(f"Webhook {webhook_id} not claimable, skipping")
        return None

    logger.info(f"Processing webhook {webhook.id} ({webhook.event_type})")

    try:
        await dispatch(db, webhook)
    except Exception as e:
        logger.exception(f"Failed to process webhook {webhook.id}")
        failed = await db.fail_webhook(webhook.id, str(e) or type(e).__name__)
        if failed and failed.retry_count >= db.max_webhook_retries:
            logger.error(
                f"Webhook {webhook.id} permanently failed after {failed.retry_count} attempts"
            )
        return failed

    return await db.complete_webhook(webhook.id)
