"""Test doubles and record builders shared across test modules."""

import asyncio
from decimal import Decimal
from typing import Any, Optional

from catalog_sync.ingest.supplier_client import SupplierFetchError


def make_payload(
    asin: str,
    title: str = "Acme Widget Pro",
    price: Any = "$20.00",
    availability: Optional[str] = "In Stock",
    **extra,
) -> dict[str, Any]:
    payload = {
        "asin": asin,
        "product_title": title,
        "product_price": price,
        "product_availability": availability,
        "product_star_rating": "4.5",
        "product_num_ratings": 120,
        "product_photo": f"https://images.example.com/{asin}.jpg",
    }
    payload.update(extra)
    return payload


class FakeSupplierClient:
    """
    In-memory SupplierClient.

    Returns payloads by ASIN; ASINs listed in ``failing`` raise
    SupplierFetchError. ``on_fetch`` runs before every lookup.
    """

    def __init__(self, payloads: Optional[dict[str, dict]] = None, failing=(), on_fetch=None):
        self.payloads = payloads or {}
        self.failing = set(failing)
        self.on_fetch = on_fetch
        self.default_country = "AU"
        self.calls: list[str] = []
        self.closed = False

    async def fetch_product(self, identifier: str, country: Optional[str] = None) -> dict:
        self.calls.append(identifier)
        if self.on_fetch is not None:
            self.on_fetch(identifier)
        await asyncio.sleep(0)
        if identifier in self.failing or identifier not in self.payloads:
            raise SupplierFetchError(identifier, 3, RuntimeError("upstream timeout"))
        return self.payloads[identifier]

    async def close(self) -> None:
        self.closed = True


def product_values(
    asin: str,
    user_id: str = "user-1",
    supplier_price: str = "20.00",
    scrape_errors: int = 0,
    is_active: bool = True,
    **extra,
) -> dict[str, Any]:
    values = {
        "user_id": user_id,
        "internal_sku": f"AMZ{asin}000001",
        "supplier_sku": asin,
        "supplier_asin": asin,
        "title": f"Stored {asin}",
        "features": [],
        "image_urls": [],
        "supplier_price": Decimal(supplier_price),
        "our_price": Decimal("0.00"),
        "scrape_errors": scrape_errors,
        "is_active": is_active,
    }
    values.update(extra)
    return values


def asin_for(index: int) -> str:
    return f"B0TEST{index:04d}"
