#!/usr/bin/env python3
"""
Cron job script for background sweeps.
Add to crontab: */5 * * * * cd /path/to/app && /path/to/venv/bin/python scripts/run_jobs.py

Processes pending and retryable webhooks, then refreshes Shopee tokens that
are about to expire. Runs standalone, not through the web server.
"""

import asyncio
import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kaching.config import settings
from kaching.db import SQLiteDatabase
from kaching.processor import refresh_expiring_tokens, run_pending_webhooks
from kaching.shopee import ShopeeClient

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


async def main():
    logger.info("Starting scheduled jobs...")

    db = SQLiteDatabase(settings.database_path, settings.webhook_max_retries)
    await db.initialize()

    failed = 0

    try:
        webhook_results = await run_pending_webhooks(db, settings.max_concurrent_jobs)
        for r in webhook_results:
            if not r.success:
                failed += 1
                logger.error(f"  webhook {r.webhook_id}: {r.error}")

        if settings.shopee_configured:
            async with ShopeeClient(
                settings.shopee_partner_id,
                settings.shopee_partner_key,
                settings.shopee_api_base_url,
            ) as client:
                refresh_results = await refresh_expiring_tokens(
                    db, client, max_concurrent=settings.max_concurrent_jobs
                )
            for r in refresh_results:
                if not r.success:
                    failed += 1
                    logger.error(f"  token refresh for shop {r.shop_id}: {r.error}")
        else:
            refresh_results = []
            logger.info("Shopee not configured, skipping token refresh")

        expired = await db.cleanup_expired_sessions()

        logger.info(
            f"Jobs completed: {len(webhook_results)} webhooks, "
            f"{len(refresh_results)} token refreshes, {expired} expired sessions removed, "
            f"{failed} failures"
        )

        if failed > 0:
            sys.exit(1)

    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
