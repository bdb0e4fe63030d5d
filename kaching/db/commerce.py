"""
Marketplace storage: integrations, catalog, orders and webhook payloads.
"""

from datetime import datetime
from typing import List, Optional

from .columns import to_db_datetime, to_db_decimal, to_db_json
from .models import (
    IntegrationStatus, Order, Page, Platform, Product, ShopeeIntegration,
    WebhookPayload, WebhookStatus, utcnow
)

PRODUCT_FIELDS = {"name", "sku", "stock", "price", "image_url"}


class CommerceMixin:
    """Operations on marketplace data for a shop."""

    # ===== Integration Operations =====

    async def upsert_integration(
        self,
        shop_id: str,
        shopee_shop_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime
    ) -> ShopeeIntegration:
        """
        Store fresh credentials for a shop.

        A reconnect resets health bookkeeping and clears a previous disconnect.
        """
        integration = ShopeeIntegration(
            shop_id=shop_id,
            shopee_shop_id=shopee_shop_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at
        )
        now = to_db_datetime(integration.created_at)

        await self.execute(
            """
            INSERT INTO shopee_integrations (id, shop_id, access_token, refresh_token,
                                             expires_at, shopee_shop_id, status,
                                             failure_count, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 'HEALTHY', 0, ?, ?)
            ON CONFLICT(shop_id) DO UPDATE SET
                shopee_shop_id = excluded.shopee_shop_id,
                access_token = excluded.access_token,
                refresh_token = excluded.refresh_token,
                expires_at = excluded.expires_at,
                status = 'HEALTHY',
                failure_count = 0,
                deleted_at = NULL,
                updated_at = excluded.updated_at
            """,
            (
                integration.id,
                shop_id,
                access_token,
                refresh_token,
                to_db_datetime(expires_at),
                shopee_shop_id,
                now,
                now
            )
        )
        return await self.get_integration(shop_id)

    async def get_integration(self, shop_id: str) -> Optional[ShopeeIntegration]:
        row = await self._fetch_one(
            "SELECT * FROM shopee_integrations WHERE shop_id = ?", (shop_id,)
        )
        return self._to_model(ShopeeIntegration, row)

    async def get_integration_by_shopee_shop_id(
        self,
        shopee_shop_id: str
    ) -> Optional[ShopeeIntegration]:
        """Find the active integration for an external shop id."""
        row = await self._fetch_one(
            """
            SELECT * FROM shopee_integrations
            WHERE shopee_shop_id = ? AND deleted_at IS NULL
            """,
            (str(shopee_shop_id),)
        )
        return self._to_model(ShopeeIntegration, row)

    async def list_active_integrations(
        self,
        expiring_before: Optional[datetime] = None
    ) -> List[ShopeeIntegration]:
        query = "SELECT * FROM shopee_integrations WHERE deleted_at IS NULL"
        params = []
        if expiring_before is not None:
            query += " AND expires_at < ?"
            params.append(to_db_datetime(expiring_before))
        query += " ORDER BY expires_at ASC"

        rows = await self.query_raw(query, params)
        return [self._to_model(ShopeeIntegration, row) for row in rows]

    async def update_integration_tokens(
        self,
        shop_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime
    ) -> Optional[ShopeeIntegration]:
        await self.execute(
            """
            UPDATE shopee_integrations
            SET access_token = ?, refresh_token = ?, expires_at = ?, updated_at = ?
            WHERE shop_id = ? AND deleted_at IS NULL
            """,
            (
                access_token,
                refresh_token,
                to_db_datetime(expires_at),
                to_db_datetime(utcnow()),
                shop_id
            )
        )
        return await self.get_integration(shop_id)

    async def disconnect_integration(self, shop_id: str) -> Optional[ShopeeIntegration]:
        """Soft delete: wipe credentials and mark DISCONNECTED."""
        now = to_db_datetime(utcnow())
        await self.execute(
            """
            UPDATE shopee_integrations
            SET access_token = '', refresh_token = '', status = ?,
                deleted_at = ?, updated_at = ?
            WHERE shop_id = ?
            """,
            (IntegrationStatus.DISCONNECTED.value, now, now, shop_id)
        )
        return await self.get_integration(shop_id)

    async def record_integration_success(
        self,
        shop_id: str,
        synced_at: Optional[datetime] = None
    ) -> Optional[ShopeeIntegration]:
        """Reset the failure counter; optionally stamp the last sync time."""
        now = utcnow()
        await self.execute(
            """
            UPDATE shopee_integrations
            SET status = 'HEALTHY', failure_count = 0,
                last_sync_at = COALESCE(?, last_sync_at), updated_at = ?
            WHERE shop_id = ? AND deleted_at IS NULL
            """,
            (to_db_datetime(synced_at), to_db_datetime(now), shop_id)
        )
        return await self.get_integration(shop_id)

    async def record_integration_failure(
        self,
        shop_id: str,
        threshold: int
    ) -> Optional[ShopeeIntegration]:
        """Count a failure; the integration turns UNHEALTHY at the threshold."""
        await self.execute(
            """
            UPDATE shopee_integrations
            SET failure_count = failure_count + 1,
                status = CASE WHEN failure_count + 1 >= ? THEN 'UNHEALTHY' ELSE status END,
                updated_at = ?
            WHERE shop_id = ? AND deleted_at IS NULL
            """,
            (threshold, to_db_datetime(utcnow()), shop_id)
        )
        return await self.get_integration(shop_id)

    # ===== Product Operations =====

    async def create_product(self, product: Product) -> Product:
        await self.execute(
            """
            INSERT INTO products (id, shop_id, platform, shopee_product_id, name, sku,
                                  stock, price, image_url, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                product.id,
                product.shop_id,
                product.platform.value,
                product.shopee_product_id,
                product.name,
                product.sku,
                product.stock,
                to_db_decimal(product.price),
                product.image_url,
                to_db_datetime(product.created_at),
                to_db_datetime(product.updated_at)
            )
        )
        return product

    async def upsert_product(self, product: Product) -> Product:
        """Insert or refresh a product keyed by (shop, external product id)."""
        await self.execute(
            """
            INSERT INTO products (id, shop_id, platform, shopee_product_id, name, sku,
                                  stock, price, image_url, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(shop_id, shopee_product_id) DO UPDATE SET
                name = excluded.name,
                sku = excluded.sku,
                stock = excluded.stock,
                price = excluded.price,
                image_url = excluded.image_url,
                updated_at = excluded.updated_at
            """,
            (
                product.id,
                product.shop_id,
                product.platform.value,
                product.shopee_product_id,
                product.name,
                product.sku,
                product.stock,
                to_db_decimal(product.price),
                product.image_url,
                to_db_datetime(product.created_at),
                to_db_datetime(utcnow())
            )
        )
        return await self.get_product_by_external_id(product.shop_id, product.shopee_product_id)

    async def get_product(self, product_id: str) -> Optional[Product]:
        row = await self._fetch_one("SELECT * FROM products WHERE id = ?", (product_id,))
        return self._to_model(Product, row)

    async def get_product_by_external_id(
        self,
        shop_id: str,
        shopee_product_id: str
    ) -> Optional[Product]:
        row = await self._fetch_one(
            "SELECT * FROM products WHERE shop_id = ? AND shopee_product_id = ?",
            (shop_id, str(shopee_product_id))
        )
        return self._to_model(Product, row)

    async def update_product(self, product_id: str, **kwargs) -> Optional[Product]:
        if not kwargs:
            return await self.get_product(product_id)

        updates = []
        values = []
        for key, value in kwargs.items():
            if key not in PRODUCT_FIELDS:
                raise ValueError(f"Unknown product field: {key}")
            updates.append(f"{key} = ?")
            values.append(to_db_decimal(value) if key == "price" else value)

        updates.append("updated_at = ?")
        values.append(to_db_datetime(utcnow()))
        values.append(product_id)

        await self.execute(f"UPDATE products SET {', '.join(updates)} WHERE id = ?", values)
        return await self.get_product(product_id)

    async def delete_product(self, product_id: str) -> bool:
        return await self.execute("DELETE FROM products WHERE id = ?", (product_id,)) > 0

    async def list_products(
        self,
        shop_id: str,
        platform: Platform = Platform.SHOPEE,
        cursor: Optional[str] = None,
        limit: int = 50
    ) -> Page:
        return await self._paginate(
            Product,
            "products",
            "shop_id = ? AND platform = ?",
            [shop_id, platform.value],
            "updated_at",
            cursor,
            limit
        )

    # ===== Order Operations =====

    async def upsert_order(self, order: Order) -> Order:
        """
        Insert an order or refresh an existing one.

        Only status, total and items change on repeat deliveries.
        """
        now = to_db_datetime(utcnow())
        await self.execute(
            """
            INSERT INTO orders (id, shop_id, platform, shopee_order_id, order_number,
                                total_amount, customer_name, customer_email, customer_phone,
                                shipping_address, order_date, items, status,
                                created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(shop_id, shopee_order_id) DO UPDATE SET
                status = excluded.status,
                total_amount = excluded.total_amount,
                items = excluded.items,
                updated_at = excluded.updated_at
            """,
            (
                order.id,
                order.shop_id,
                order.platform.value,
                order.shopee_order_id,
                order.order_number,
                to_db_decimal(order.total_amount),
                order.customer_name,
                order.customer_email,
                order.customer_phone,
                order.shipping_address,
                to_db_datetime(order.order_date),
                to_db_json(order.items),
                order.status,
                to_db_datetime(order.created_at),
                now
            )
        )
        return await self.get_order_by_external_id(order.shop_id, order.shopee_order_id)

    async def get_order_by_external_id(self, shop_id: str, shopee_order_id: str) -> Optional[Order]:
        row = await self._fetch_one(
            "SELECT * FROM orders WHERE shop_id = ? AND shopee_order_id = ?",
            (shop_id, str(shopee_order_id))
        )
        return self._to_model(Order, row, json_fields=("items",))

    async def list_orders(
        self,
        shop_id: str,
        platform: Platform = Platform.SHOPEE,
        cursor: Optional[str] = None,
        limit: int = 50
    ) -> Page:
        return await self._paginate(
            Order,
            "orders",
            "shop_id = ? AND platform = ?",
            [shop_id, platform.value],
            "order_date",
            cursor,
            limit,
            json_fields=("items",)
        )

    # ===== Webhook Operations =====

    async def create_webhook(self, webhook: WebhookPayload) -> WebhookPayload:
        await self.execute(
            """
            INSERT INTO webhook_payloads (id, shop_id, platform, event_type, raw_payload,
                                          signature, status, processed_at, error_message,
                                          retry_count, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                webhook.id,
                webhook.shop_id,
                webhook.platform.value,
                webhook.event_type,
                to_db_json(webhook.raw_payload),
                webhook.signature,
                webhook.status.value,
                to_db_datetime(webhook.processed_at),
                webhook.error_message,
                webhook.retry_count,
                to_db_datetime(webhook.created_at),
                to_db_datetime(webhook.updated_at)
            )
        )
        return webhook

    async def get_webhook(self, webhook_id: str) -> Optional[WebhookPayload]:
        row = await self._fetch_one(
            "SELECT * FROM webhook_payloads WHERE id = ?", (webhook_id,)
        )
        return self._to_model(WebhookPayload, row, json_fields=("raw_payload",))

    async def claim_webhook(self, webhook_id: str) -> Optional[WebhookPayload]:
        """
        Move a webhook to PROCESSING.

        Only PENDING records and FAILED records with retries left can be
        claimed. PENDING ignores retry_count, so a FAILED record requeued by
        hand gets one more attempt. Returns None when the record is not
        claimable.
        """
        rowcount = await self.execute(
            """
            UPDATE webhook_payloads SET status = 'PROCESSING', updated_at = ?
            WHERE id = ?
              AND (status = 'PENDING' OR (status = 'FAILED' AND retry_count < ?))
            """,
            (to_db_datetime(utcnow()), webhook_id, self.max_webhook_retries)
        )
        if rowcount == 0:
            return None
        return await self.get_webhook(webhook_id)

    async def complete_webhook(self, webhook_id: str) -> Optional[WebhookPayload]:
        now = to_db_datetime(utcnow())
        await self.execute(
            """
            UPDATE webhook_payloads
            SET status = 'COMPLETED', processed_at = ?, error_message = NULL, updated_at = ?
            WHERE id = ? AND status = 'PROCESSING'
            """,
            (now, now, webhook_id)
        )
        return await self.get_webhook(webhook_id)

    async def fail_webhook(self, webhook_id: str, error_message: str) -> Optional[WebhookPayload]:
        await self.execute(
            """
            UPDATE webhook_payloads
            SET status = 'FAILED', error_message = ?, retry_count = retry_count + 1,
                updated_at = ?
            WHERE id = ? AND status = 'PROCESSING'
            """,
            (error_message, to_db_datetime(utcnow()), webhook_id)
        )
        return await self.get_webhook(webhook_id)

    async def requeue_webhook(self, webhook_id: str) -> Optional[WebhookPayload]:
        """Put a FAILED webhook back to PENDING for one more attempt."""
        rowcount = await self.execute(
            """
            UPDATE webhook_payloads SET status = 'PENDING', updated_at = ?
            WHERE id = ? AND status = 'FAILED'
            """,
            (to_db_datetime(utcnow()), webhook_id)
        )
        if rowcount == 0:
            return None
        return await self.get_webhook(webhook_id)

    async def requeue_stale_webhooks(self, stale_before: datetime) -> int:
        """Release PROCESSING records abandoned by a crashed worker."""
        return await self.execute(
            """
            UPDATE webhook_payloads SET status = 'PENDING', updated_at = ?
            WHERE status = 'PROCESSING' AND updated_at < ?
            """,
            (to_db_datetime(utcnow()), to_db_datetime(stale_before))
        )

    async def list_webhooks(
        self,
        shop_id: str,
        status: Optional[WebhookStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[WebhookPayload]:
        query = "SELECT * FROM webhook_payloads WHERE shop_id = ?"
        params = [shop_id]

        if status:
            query += " AND status = ?"
            params.append(status.value)

        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        rows = await self.query_raw(query, params)
        return [self._to_model(WebhookPayload, row, json_fields=("raw_payload",)) for row in rows]

    async def list_retryable_webhooks(self, limit: int = 500) -> List[WebhookPayload]:
        """PENDING records and FAILED records with retries left, oldest first."""
        rows = await self.query_raw(
            """
            SELECT * FROM webhook_payloads
            WHERE status = 'PENDING' OR (status = 'FAILED' AND retry_count < ?)
            ORDER BY created_at ASC
            LIMIT ?
            """,
            (self.max_webhook_retries, limit)
        )
        return [self._to_model(WebhookPayload, row, json_fields=("raw_payload",)) for row in rows]
