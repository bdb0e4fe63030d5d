"""
Catalog import from Shopee.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from ..crypto import TokenDecryptError, decrypt_token
from ..db import Platform, Product, SQLiteDatabase, utcnow
from ..shopee import ItemListPage, ShopeeAuthError, ShopeeClient, ShopeeClientError
from . import health

logger = logging.getLogger(__name__)

PAGE_SIZE = 50


class CatalogImportError(Exception):
    """Import could not complete."""
    pass


@dataclass
class ImportResult:
    """Outcome of a catalog import."""
    shop_id: str
    imported: int
    total: int


def _item_price(item: Dict[str, Any]) -> Decimal:
    price = item.get("price")
    if price is None:
        price_info = item.get("price_info") or []
        if price_info:
            price = price_info[0].get("current_price")
    return Decimal(str(price)) if price is not None else Decimal("0.00")


def _item_image(item: Dict[str, Any]) -> Optional[str]:
    images = item.get("images")
    if not images:
        images = (item.get("image") or {}).get("image_url_list")
    return images[0] if images else None


def product_from_item(shop_id: str, item: Dict[str, Any]) -> Product:
    """Map a Shopee item (list or base info shape) to a catalog product."""
    return Product(
        shop_id=shop_id,
        platform=Platform.SHOPEE,
        shopee_product_id=str(item["item_id"]),
        name=item.get("item_name") or "Unknown Product",
        sku=item.get("item_sku") or None,
        stock=int(item.get("stock") or 0),
        price=_item_price(item),
        image_url=_item_image(item),
    )


async def _fetch_page(
    client: ShopeeClient,
    shopee_shop_id: str,
    access_token: str,
    offset: int,
    page_size: int
) -> ItemListPage:
    page = await client.get_item_list(shopee_shop_id, access_token, offset, page_size)

    # get_item_list may return bare ids; details come from get_item_base_info
    missing = [item["item_id"] for item in page.items if "item_name" not in item]
    if missing:
        details = await client.get_item_base_info(shopee_shop_id, access_token, missing)
        by_id = {str(d["item_id"]): d for d in details}
        page.items = [
            {**item, **by_id.get(str(item["item_id"]), {})} for item in page.items
        ]
    return page


async def import_products(
    db: SQLiteDatabase,
    client: ShopeeClient,
    shop_id: str,
    page_size: int = PAGE_SIZE
) -> ImportResult:
    """
    Import the shop's active Shopee items into the catalog.

    An expired token is refreshed once and the page retried. A failed refresh
    or any other API error counts as an integration failure.
    """
    integration = await db.get_integration(shop_id)
    if integration is None or not integration.is_active:
        raise CatalogImportError(f"No active Shopee integration for shop {shop_id}")

    logger.info(f"Starting catalog import for shop {shop_id}")

    try:
        access_token = decrypt_token(integration.access_token)
    except TokenDecryptError as e:
        await health.record_failure(db, shop_id)
        raise CatalogImportError(f"Stored token unreadable: {e}") from e

    offset = 0
    imported = 0
    total = 0
    refreshed = False

    while True:
        try:
            page = await _fetch_page(
                client, integration.shopee_shop_id, access_token, offset, page_size
            )
        except ShopeeAuthError as e:
            if refreshed:
                await health.record_failure(db, shop_id)
                raise CatalogImportError(f"Token rejected after refresh: {e}") from e

            logger.info(f"Token rejected for shop {shop_id}, refreshing")
            try:
                integration = await health.refresh_integration_token(db, client, shop_id)
                access_token = decrypt_token(integration.access_token)
            except (ShopeeClientError, TokenDecryptError, health.IntegrationUnavailableError) as refresh_error:
                logger.error(f"Failed to refresh token for shop {shop_id}: {refresh_error}")
                await health.record_failure(db, shop_id)
                raise CatalogImportError(f"Token refresh failed: {refresh_error}") from refresh_error
            refreshed = True
            continue
        except ShopeeClientError as e:
            await health.record_failure(db, shop_id)
            raise CatalogImportError(str(e)) from e

        for item in page.items:
            await db.upsert_product(product_from_item(shop_id, item))
        imported += len(page.items)
        total = page.total_count or imported

        logger.info(f"Imported {imported}/{total} products for shop {shop_id}")

        if not page.has_next_page or page.next_offset <= offset:
            break
        offset = page.next_offset

    await health.record_success(db, shop_id, synced_at=utcnow())
    logger.info(f"Completed catalog import for shop {shop_id}: {imported} products")

    return ImportResult(shop_id=shop_id, imported=imported, total=total)
