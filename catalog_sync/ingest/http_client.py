"""HTTP plumbing for the supplier data API: client factory and status-aware errors."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from catalog_sync.config import settings

logger = logging.getLogger(__name__)


class SupplierHTTPError(RuntimeError):
    """Raised when the supplier API answers with a non-2xx status."""

    def __init__(self, status_code: int, message: Optional[str] = None):
        super().__init__(message or f"Supplier API returned HTTP {status_code}")
        self.status_code = status_code


class RateLimitedError(SupplierHTTPError):
    """Raised when rate limited (429)."""

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__(429, "Rate limited")
        self.retry_after = retry_after


def default_headers(api_key: Optional[str] = None, api_host: Optional[str] = None) -> dict[str, str]:
    """Headers carrying the fixed API-key pair."""
    return {
        "X-RapidAPI-Key": api_key if api_key is not None else settings.supplier_api_key,
        "X-RapidAPI-Host": api_host if api_host is not None else settings.supplier_api_host,
        "Accept": "application/json",
    }


def build_client(
    base_url: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the AsyncClient used for supplier lookups.

    Args:
        base_url: API root (defaults to settings)
        timeout_seconds: Per-request timeout applied to every phase
        transport: Optional transport override (tests use httpx.MockTransport)
    """
    timeout = timeout_seconds if timeout_seconds is not None else settings.supplier_timeout_seconds
    return httpx.AsyncClient(
        base_url=base_url or settings.supplier_api_base_url,
        headers=default_headers(),
        timeout=httpx.Timeout(timeout),
        transport=transport,
    )


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def raise_for_supplier_status(response: httpx.Response) -> None:
    """
    Map an HTTP response to the supplier error taxonomy.

    Raises:
        RateLimitedError: On 429
        SupplierHTTPError: On any other non-2xx status
    """
    sc = response.status_code
    if sc == 429:
        raise RateLimitedError(_parse_retry_after(response.headers.get("Retry-After")))
    if sc < 200 or sc >= 300:
        raise SupplierHTTPError(sc, f"Supplier API returned HTTP {sc} for {response.request.url.path}")
