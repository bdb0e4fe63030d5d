"""
Column encoders shared by the SQLite mixins.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional


def to_db_datetime(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a sortable ISO-8601 UTC string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def to_db_json(value: Any) -> str:
    return json.dumps(value, default=str)


def to_db_decimal(value: Any) -> str:
    """Money columns are stored as 2dp strings."""
    return str(Decimal(str(value)).quantize(Decimal("0.01")))
