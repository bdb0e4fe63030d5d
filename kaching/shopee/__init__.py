"""
Shopee partner API client and push helpers.
"""

from .client import (
    ItemListPage,
    ShopeeAuthError,
    ShopeeClient,
    ShopeeClientError,
    ShopeeRateLimitError,
    TokenGrant,
)
from .webhook import (
    compute_signature,
    extract_shop_id,
    from_shopee_amount,
    is_timestamp_valid,
    verify_signature,
)

__all__ = [
    "ShopeeClient",
    "ShopeeClientError",
    "ShopeeAuthError",
    "ShopeeRateLimitError",
    "TokenGrant",
    "ItemListPage",
    "compute_signature",
    "verify_signature",
    "is_timestamp_valid",
    "extract_shop_id",
    "from_shopee_amount",
]
