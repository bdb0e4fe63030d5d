"""
Tests for the webhook state machine and event handlers.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from kaching.db import Platform, Product, WebhookPayload, WebhookStatus
from kaching.processor import process_webhook, run_pending_webhooks
from kaching.processor.webhooks import WebhookPayloadError, order_from_payload


async def _store(db, shop_id, event_type, payload):
    return await db.create_webhook(WebhookPayload(
        shop_id=shop_id,
        platform=Platform.SHOPEE,
        event_type=event_type,
        raw_payload=payload,
    ))


@pytest_asyncio.fixture
async def shop(make_user, make_shop):
    owner = await make_user()
    return await make_shop(owner.id)


class TestOrderFromPayload:
    """Tests for mapping order pushes to orders."""

    def test_reads_fields_under_data(self):
        """Order fields nested under data are mapped."""
        webhook = WebhookPayload(
            shop_id="s1",
            platform=Platform.SHOPEE,
            event_type="order.created",
            raw_payload={
                "shop_id": 555,
                "data": {
                    "order_sn": "2301ABC",
                    "total_amount": 12345000,
                    "buyer_username": "juan",
                    "create_time": 1700000000,
                    "order_status": "READY_TO_SHIP",
                },
            },
        )

        order = order_from_payload(webhook)

        assert order.shopee_order_id == "2301ABC"
        assert order.order_number == "2301ABC"
        assert order.total_amount == Decimal("123.45")
        assert order.customer_name == "juan"
        assert order.order_date.year == 2023
        assert order.status == "READY_TO_SHIP"

    def test_defaults_for_missing_buyer_and_status(self):
        """Missing buyer and status fall back to defaults."""
        webhook = WebhookPayload(
            shop_id="s1",
            platform=Platform.SHOPEE,
            event_type="order.created",
            raw_payload={"order_id": 99},
        )

        order = order_from_payload(webhook)

        assert order.customer_name == "Unknown"
        assert order.status == "UNKNOWN"
        assert order.total_amount == Decimal("0.00")

    def test_missing_order_id_rejected(self):
        """An order push without an id is invalid."""
        webhook = WebhookPayload(
            shop_id="s1", platform=Platform.SHOPEE, event_type="order.created", raw_payload={}
        )

        with pytest.raises(WebhookPayloadError):
            order_from_payload(webhook)


class TestProcessWebhook:
    """Tests for claim, apply and complete/fail transitions."""

    @pytest.mark.asyncio
    async def test_order_event_completes(self, db, shop):
        """An order push upserts the order and completes."""
        webhook = await _store(db, shop.id, "order.created", {
            "order_sn": "SN1", "total_amount": 5000000, "order_status": "UNPAID",
        })

        result = await process_webhook(db, webhook.id)

        assert result.status == WebhookStatus.COMPLETED
        assert result.processed_at is not None
        order = await db.get_order_by_external_id(shop.id, "SN1")
        assert order.total_amount == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_repeat_order_event_updates_status(self, db, shop):
        """Later order pushes update the same order."""
        first = await _store(db, shop.id, "order.created", {"order_sn": "SN1", "order_status": "UNPAID"})
        second = await _store(db, shop.id, "order.updated", {"order_sn": "SN1", "order_status": "SHIPPED"})

        await process_webhook(db, first.id)
        await process_webhook(db, second.id)

        page = await db.list_orders(shop.id)
        assert len(page.items) == 1
        assert page.items[0].status == "SHIPPED"

    @pytest.mark.asyncio
    async def test_unknown_product_created_on_update(self, db, shop):
        """An update for an unknown item creates the product."""
        webhook = await _store(db, shop.id, "product.stock_updated", {
            "item_id": 42, "stock": 7, "price": 1990000,
        })

        await process_webhook(db, webhook.id)

        product = await db.get_product_by_external_id(shop.id, "42")
        assert product.name == "Unknown Product"
        assert product.stock == 7
        assert product.price == Decimal("19.90")

    @pytest.mark.asyncio
    async def test_stock_update_only_touches_stock(self, db, shop):
        """product.stock_updated changes stock only."""
        await db.create_product(Product(
            shop_id=shop.id, platform=Platform.SHOPEE, shopee_product_id="42",
            name="Soap", stock=1, price=Decimal("10.00"),
        ))
        webhook = await _store(db, shop.id, "product.stock_updated", {
            "data": {"item_id": 42, "stock": 9, "price": 99900000},
        })

        await process_webhook(db, webhook.id)

        product = await db.get_product_by_external_id(shop.id, "42")
        assert product.stock == 9
        assert product.price == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_price_update_only_touches_price(self, db, shop):
        """product.price_updated changes price only."""
        await db.create_product(Product(
            shop_id=shop.id, platform=Platform.SHOPEE, shopee_product_id="42",
            name="Soap", stock=1, price=Decimal("10.00"),
        ))
        webhook = await _store(db, shop.id, "product.price_updated", {
            "item_id": 42, "price": 2550000, "stock": 99, "item_name": "Renamed",
        })

        result = await process_webhook(db, webhook.id)

        assert result.status == WebhookStatus.COMPLETED
        product = await db.get_product_by_external_id(shop.id, "42")
        assert product.price == Decimal("25.50")
        assert product.stock == 1
        assert product.name == "Soap"

    @pytest.mark.asyncio
    async def test_full_update_applies_present_fields(self, db, shop):
        """product.updated applies whichever fields are present."""
        await db.create_product(Product(
            shop_id=shop.id, platform=Platform.SHOPEE, shopee_product_id="42",
            name="Soap", sku="SOAP-1", stock=1, price=Decimal("10.00"),
            image_url="https://cdn.example.com/old.jpg",
        ))
        webhook = await _store(db, shop.id, "product.updated", {
            "data": {
                "item_id": 42,
                "item_name": "Lavender Soap",
                "stock": 12,
                "images": ["https://cdn.example.com/new.jpg"],
            },
        })

        await process_webhook(db, webhook.id)

        product = await db.get_product_by_external_id(shop.id, "42")
        assert product.name == "Lavender Soap"
        assert product.stock == 12
        assert product.image_url == "https://cdn.example.com/new.jpg"
        # Absent fields are left alone
        assert product.price == Decimal("10.00")
        assert product.sku == "SOAP-1"

    @pytest.mark.asyncio
    async def test_inventory_events_reach_product_handler(self, db, shop):
        """inventory events are handled as product events."""
        webhook = await _store(db, shop.id, "inventory.low_stock", {
            "item_id": 77, "item_name": "Candle", "stock": 2,
        })

        result = await process_webhook(db, webhook.id)

        assert result.status == WebhookStatus.COMPLETED
        product = await db.get_product_by_external_id(shop.id, "77")
        assert product.name == "Candle"
        assert product.stock == 2

    @pytest.mark.asyncio
    async def test_product_event_without_item_id_fails(self, db, shop):
        """A product push without item_id fails."""
        webhook = await _store(db, shop.id, "inventory.low_stock", {"stock": 2})

        result = await process_webhook(db, webhook.id)

        assert result.status == WebhookStatus.FAILED
        assert "item_id" in result.error_message

    @pytest.mark.asyncio
    async def test_delete_removes_known_product(self, db, shop):
        """product.deleted removes the product."""
        await db.create_product(Product(
            shop_id=shop.id, platform=Platform.SHOPEE, shopee_product_id="42", name="Soap",
        ))
        webhook = await _store(db, shop.id, "product.deleted", {"item_id": 42})

        result = await process_webhook(db, webhook.id)

        assert result.status == WebhookStatus.COMPLETED
        assert await db.get_product_by_external_id(shop.id, "42") is None

    @pytest.mark.asyncio
    async def test_delete_of_unknown_product_is_ignored(self, db, shop):
        """Deleting an unknown item is a no-op."""
        webhook = await _store(db, shop.id, "product.deleted", {"item_id": 42})

        result = await process_webhook(db, webhook.id)

        assert result.status == WebhookStatus.COMPLETED
        assert await db.get_product_by_external_id(shop.id, "42") is None

    @pytest.mark.asyncio
    async def test_unhandled_event_completes(self, db, shop):
        """Events without a handler complete unchanged."""
        webhook = await _store(db, shop.id, "shop.authorization_cancelled", {"shop_id": 555})

        result = await process_webhook(db, webhook.id)

        assert result.status == WebhookStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_bad_payload_fails_with_message(self, db, shop):
        """A bad payload fails with its error and one retry used."""
        webhook = await _store(db, shop.id, "order.created", {"shop_id": 555})

        result = await process_webhook(db, webhook.id)

        assert result.status == WebhookStatus.FAILED
        assert result.retry_count == 1
        assert "order_id" in result.error_message

    @pytest.mark.asyncio
    async def test_completed_webhook_not_reprocessed(self, db, shop):
        """COMPLETED records are not claimed again."""
        webhook = await _store(db, shop.id, "order.created", {"order_sn": "SN1"})
        await process_webhook(db, webhook.id)

        assert await process_webhook(db, webhook.id) is None

    @pytest.mark.asyncio
    async def test_unknown_webhook_returns_none(self, db):
        """An unknown id is not claimable."""
        assert await process_webhook(db, "missing") is None


class TestRetryLimits:
    """Tests for FAILED records and their retry budget."""

    @pytest.mark.asyncio
    async def test_failed_webhook_stops_after_max_retries(self, db, shop):
        """A record is left alone once its retries are used up."""
        webhook = await _store(db, shop.id, "order.created", {})

        for _ in range(db.max_webhook_retries):
            result = await process_webhook(db, webhook.id)
            assert result.status == WebhookStatus.FAILED

        assert result.retry_count == db.max_webhook_retries
        assert await process_webhook(db, webhook.id) is None
        assert await db.list_retryable_webhooks() == []

    @pytest.mark.asyncio
    async def test_requeue_gives_one_more_attempt(self, db, shop):
        """A manual requeue grants exactly one more attempt."""
        webhook = await _store(db, shop.id, "order.created", {})
        for _ in range(db.max_webhook_retries):
            await process_webhook(db, webhook.id)

        requeued = await db.requeue_webhook(webhook.id)

        assert requeued.status == WebhookStatus.PENDING
        result = await process_webhook(db, webhook.id)
        assert result.status == WebhookStatus.FAILED
        assert result.retry_count == db.max_webhook_retries + 1
        assert await process_webhook(db, webhook.id) is None

    @pytest.mark.asyncio
    async def test_requeue_ignores_non_failed(self, db, shop):
        """Only FAILED records can be requeued."""
        webhook = await _store(db, shop.id, "order.created", {"order_sn": "SN1"})

        assert await db.requeue_webhook(webhook.id) is None

    @pytest.mark.asyncio
    async def test_claim_is_exclusive(self, db, shop):
        """A claimed record cannot be claimed twice."""
        webhook = await _store(db, shop.id, "order.created", {"order_sn": "SN1"})

        claimed = await db.claim_webhook(webhook.id)

        assert claimed.status == WebhookStatus.PROCESSING
        assert await db.claim_webhook(webhook.id) is None


class TestRunPendingWebhooks:
    """Tests for the batch runner."""

    @pytest.mark.asyncio
    async def test_processes_pending_and_reports_failures(self, db, shop):
        """The runner processes everything and reports each result."""
        good = await _store(db, shop.id, "order.created", {"order_sn": "SN1"})
        bad = await _store(db, shop.id, "order.created", {})

        results = await run_pending_webhooks(db, max_concurrent=2)

        by_id = {r.webhook_id: r for r in results}
        assert by_id[good.id].success
        assert by_id[good.id].status == WebhookStatus.COMPLETED
        assert not by_id[bad.id].success
        assert by_id[bad.id].status == WebhookStatus.FAILED

    @pytest.mark.asyncio
    async def test_releases_stale_processing(self, db, shop):
        """Records stuck in PROCESSING are released and processed."""
        webhook = await _store(db, shop.id, "order.created", {"order_sn": "SN1"})
        await db.claim_webhook(webhook.id)
        await db.execute(
            "UPDATE webhook_payloads SET updated_at = ? WHERE id = ?",
            ("2000-01-01T00:00:00.000000+00:00", webhook.id),
        )

        results = await run_pending_webhooks(db)

        assert [r.webhook_id for r in results] == [webhook.id]
        assert (await db.get_webhook(webhook.id)).status == WebhookStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, db):
        """An empty queue gives no results."""
        assert await run_pending_webhooks(db) == []
