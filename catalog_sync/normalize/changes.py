"""Field-level diff between a stored product and a fresh normalization."""

from decimal import Decimal
from typing import Any, Optional

from catalog_sync.db.models import Product
from catalog_sync.normalize.processor import NormalizedProduct

# Fields compared on every sync
TRACKED_FIELDS = (
    "title",
    "brand",
    "category",
    "description",
    "features",
    "image_urls",
    "supplier_price",
    "original_price",
    "our_price",
    "stock_status",
    "stock_quantity",
    "rating_average",
    "rating_count",
)

PRICE_FIELDS = {"supplier_price", "original_price", "our_price"}


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal("0.01"))


def _comparable(name: str, value: Any) -> Any:
    if name in PRICE_FIELDS:
        return _as_decimal(value)
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    return value


def detect_changes(stored: Product, fresh: NormalizedProduct) -> dict[str, tuple[Any, Any]]:
    """
    Compare tracked fields.

    Returns:
        Mapping of field name to (old, new) for every field that differs
    """
    changes = {}
    for name in TRACKED_FIELDS:
        old = _comparable(name, getattr(stored, name))
        new = _comparable(name, getattr(fresh, name))
        if old != new:
            changes[name] = (old, new)
    return changes


def price_changed(stored_price: Any, fresh_price: Any) -> bool:
    """True when the supplier price differs at cent precision."""
    return _as_decimal(stored_price) != _as_decimal(fresh_price)
