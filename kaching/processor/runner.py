"""
Runners for background work across many records.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from ..config import settings
from ..crypto import TokenDecryptError
from ..db import ShopeeIntegration, SQLiteDatabase, WebhookPayload, WebhookStatus, utcnow
from ..shopee import ShopeeClient, ShopeeClientError
from . import health
from .catalog import CatalogImportError, ImportResult, import_products
from .webhooks import process_webhook

logger = logging.getLogger(__name__)

# PROCESSING records older than this were abandoned by a crashed worker
STALE_PROCESSING_AFTER = timedelta(minutes=15)


@dataclass
class WebhookRunResult:
    """Result of processing one webhook record."""
    webhook_id: str
    status: Optional[WebhookStatus]
    error: Optional[str]

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class RefreshResult:
    """Result of refreshing one integration's token."""
    shop_id: str
    error: Optional[str]

    @property
    def success(self) -> bool:
        return self.error is None


async def run_webhook(db: SQLiteDatabase, webhook_id: str) -> WebhookRunResult:
    """Process one webhook, never raising."""
    try:
        webhook = await process_webhook(db, webhook_id)
    except Exception as e:
        logger.exception(f"Unexpected error processing webhook {webhook_id}")
        return WebhookRunResult(webhook_id=webhook_id, status=None, error=f"Unexpected error: {e}")

    if webhook is None:
        return WebhookRunResult(webhook_id=webhook_id, status=None, error=None)
    if webhook.status == WebhookStatus.FAILED:
        return WebhookRunResult(webhook_id=webhook_id, status=webhook.status, error=webhook.error_message)
    return WebhookRunResult(webhook_id=webhook_id, status=webhook.status, error=None)


async def run_pending_webhooks(
    db: SQLiteDatabase,
    max_concurrent: int = 5,
    limit: int = 500
) -> List[WebhookRunResult]:
    """Process every PENDING webhook and every FAILED one with retries left."""
    released = await db.requeue_stale_webhooks(utcnow() - STALE_PROCESSING_AFTER)
    if released:
        logger.warning(f"Released {released} stale PROCESSING webhooks")

    webhooks = await db.list_retryable_webhooks(limit)
    if not webhooks:
        logger.info("No webhooks to process")
        return []

    logger.info(f"Processing {len(webhooks)} webhooks")

    semaphore = asyncio.Semaphore(max_concurrent)

    async def run_with_semaphore(webhook: WebhookPayload) -> WebhookRunResult:
        async with semaphore:
            return await run_webhook(db, webhook.id)

    results = await asyncio.gather(*[run_with_semaphore(w) for w in webhooks])

    successful = sum(1 for r in results if r.success)
    logger.info(f"Webhooks processed: {successful} successful, {len(results) - successful} failed")

    return list(results)


async def refresh_single_integration(
    db: SQLiteDatabase,
    client: ShopeeClient,
    integration: ShopeeIntegration
) -> RefreshResult:
    try:
        await health.refresh_integration_token(db, client, integration.shop_id)
        await health.record_success(db, integration.shop_id)
        return RefreshResult(shop_id=integration.shop_id, error=None)
    except (ShopeeClientError, TokenDecryptError, health.IntegrationUnavailableError) as e:
        logger.error(f"Token refresh failed for shop {integration.shop_id}: {e}")
        await health.record_failure(db, integration.shop_id)
        return RefreshResult(shop_id=integration.shop_id, error=str(e))
    except Exception as e:
        logger.exception(f"Unexpected error refreshing shop {integration.shop_id}")
        return RefreshResult(shop_id=integration.shop_id, error=f"Unexpected error: {e}")


async def refresh_expiring_tokens(
    db: SQLiteDatabase,
    client: ShopeeClient,
    margin: Optional[int] = None,
    max_concurrent: int = 5
) -> List[RefreshResult]:
    """Refresh every active integration whose token expires within the margin."""
    margin = settings.token_refresh_margin if margin is None else margin
    now = utcnow()
    integrations = await db.list_active_integrations(expiring_before=now + timedelta(seconds=margin))
    integrations = [i for i in integrations if health.needs_refresh(i, now, margin)]

    if not integrations:
        logger.info("No tokens to refresh")
        return []

    logger.info(f"Refreshing tokens for {len(integrations)} integrations")

    semaphore = asyncio.Semaphore(max_concurrent)

    async def refresh_with_semaphore(integration: ShopeeIntegration) -> RefreshResult:
        async with semaphore:
            return await refresh_single_integration(db, client, integration)

    return list(await asyncio.gather(*[refresh_with_semaphore(i) for i in integrations]))


async def run_catalog_import(
    db: SQLiteDatabase,
    client: ShopeeClient,
    shop_id: str
) -> Optional[ImportResult]:
    """Background entry point for an import; failures are logged, not raised."""
    try:
        return await import_products(db, client, shop_id)
    except CatalogImportError as e:
        logger.error(f"Catalog import failed for shop {shop_id}: {e}")
    except Exception:
        logger.exception(f"Unexpected error importing catalog for shop {shop_id}")
    finally:
        await client.close()
    return None
