"""
Shopee push (webhook) verification and payload helpers.

Shopee signs pushes with HMAC-SHA256(partner_key, authorization + url +
timestamp + body). Monetary values in pushes are integers scaled by 100000.
"""

import hashlib
import hmac
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

AMOUNT_SCALE = Decimal(100000)
TIMESTAMP_TOLERANCE = 300  # seconds


def compute_signature(partner_key: str, authorization: str, url: str, timestamp: str, body: str) -> str:
    base_string = f"{authorization}{url}{timestamp}{body}"
    return hmac.new(
        partner_key.encode("utf-8"),
        base_string.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def verify_signature(
    partner_key: str,
    authorization: str,
    url: str,
    timestamp: str,
    body: str,
    signature: Optional[str]
) -> bool:
    """Constant-time check of a push signature. Malformed input never verifies."""
    if not partner_key or not signature:
        return False
    try:
        expected = compute_signature(partner_key, authorization or "", url, timestamp or "", body)
        return hmac.compare_digest(expected, signature.strip().lower())
    except (TypeError, AttributeError, UnicodeEncodeError):
        return False


def is_timestamp_valid(
    timestamp: Union[str, int, None],
    now: Optional[float] = None,
    tolerance: int = TIMESTAMP_TOLERANCE
) -> bool:
    """True when the push timestamp is strictly within `tolerance` seconds of now."""
    try:
        sent_at = int(timestamp)
    except (TypeError, ValueError):
        return False
    current = int(now if now is not None else time.time())
    return abs(current - sent_at) < tolerance


def extract_shop_id(event_type: str, payload: Any) -> Optional[str]:
    """Find the external shop id at the root of the payload or under `data`."""
    if not isinstance(payload, dict):
        return None

    if payload.get("shop_id"):
        return str(payload["shop_id"])

    data = payload.get("data")
    if isinstance(data, dict) and data.get("shop_id"):
        return str(data["shop_id"])

    return None


def from_shopee_amount(value: Any) -> Decimal:
    """Convert a scaled integer amount to a 2dp Decimal. Missing values are zero."""
    if value is None or value == "":
        return Decimal("0.00")
    try:
        amount = Decimal(str(value)) / AMOUNT_SCALE
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
