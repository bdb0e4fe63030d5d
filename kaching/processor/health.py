"""
Integration health tracking and token refresh.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from ..config import settings
from ..crypto import decrypt_token, encrypt_token
from ..db import IntegrationStatus, ShopeeIntegration, SQLiteDatabase, utcnow
from ..shopee import ShopeeClient

logger = logging.getLogger(__name__)


class IntegrationUnavailableError(Exception):
    """No active integration exists for the shop."""
    pass


async def record_failure(
    db: SQLiteDatabase,
    shop_id: str,
    threshold: Optional[int] = None
) -> Optional[ShopeeIntegration]:
    """
    Count a failed interaction with the marketplace.

    The integration turns UNHEALTHY once failure_count reaches the threshold.
    Disconnected integrations are left untouched.
    """
    threshold = threshold or settings.integration_failure_threshold
    before = await db.get_integration(shop_id)
    integration = await db.record_integration_failure(shop_id, threshold)

    if integration and integration.is_active:
        if (
            integration.status == IntegrationStatus.UNHEALTHY
            and before.status != IntegrationStatus.UNHEALTHY
        ):
            logger.warning(
                f"Integration for shop {shop_id} is now UNHEALTHY "
                f"after {integration.failure_count} failures"
            )
        else:
            logger.info(
                f"Integration failure recorded for shop {shop_id} "
                f"({integration.failure_count}/{threshold})"
            )
    return integration


async def record_success(
    db: SQLiteDatabase,
    shop_id: str,
    synced_at: Optional[datetime] = None
) -> Optional[ShopeeIntegration]:
    """Reset the integration to HEALTHY with no failures."""
    return await db.record_integration_success(shop_id, synced_at)


def needs_refresh(
    integration: ShopeeIntegration,
    now: Optional[datetime] = None,
    margin: Optional[int] = None
) -> bool:
    """True when an active integration's token expires within the margin."""
    if not integration.is_active:
        return False
    margin = settings.token_refresh_margin if margin is None else margin
    return integration.expires_at - (now or utcnow()) <= timedelta(seconds=margin)


async def refresh_integration_token(
    db: SQLiteDatabase,
    client: ShopeeClient,
    shop_id: str
) -> ShopeeIntegration:
    """
    Exchange the stored refresh token for a new token pair.

    Raises IntegrationUnavailableError, TokenDecryptError or a
    ShopeeClientError; the caller decides how to count the failure.
    """
    integration = await db.get_integration(shop_id)
    if integration is None or not integration.is_active:
        raise IntegrationUnavailableError(f"No active Shopee integration for shop {shop_id}")

    grant = await client.refresh_access_token(
        decrypt_token(integration.refresh_token),
        integration.shopee_shop_id
    )

    updated = await db.update_integration_tokens(
        shop_id,
        encrypt_token(grant.access_token),
        encrypt_token(grant.refresh_token),
        grant.expires_at
    )
    logger.info(f"Refreshed Shopee token for shop {shop_id}, expires {grant.expires_at}")
    return updated
