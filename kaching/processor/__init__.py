"""
Processor package for background work.
"""

from .catalog import CatalogImportError, ImportResult, import_products, product_from_item
from .health import (
    IntegrationUnavailableError,
    needs_refresh,
    record_failure,
    record_success,
    refresh_integration_token,
)
from .runner import (
    RefreshResult,
    WebhookRunResult,
    refresh_expiring_tokens,
    run_catalog_import,
    run_pending_webhooks,
    run_webhook,
)
from .webhooks import WebhookPayloadError, order_from_payload, process_webhook

__all__ = [
    "CatalogImportError",
    "ImportResult",
    "import_products",
    "product_from_item",
    "IntegrationUnavailableError",
    "needs_refresh",
    "record_failure",
    "record_success",
    "refresh_integration_token",
    "RefreshResult",
    "WebhookRunResult",
    "refresh_expiring_tokens",
    "run_catalog_import",
    "run_pending_webhooks",
    "run_webhook",
    "WebhookPayloadError",
    "order_from_payload",
    "process_webhook",
]
