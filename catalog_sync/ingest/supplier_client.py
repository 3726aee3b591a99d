"""Product lookups against the supplier data API."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from catalog_sync.config import settings
from catalog_sync.ingest.http_client import (
    RateLimitedError,
    SupplierHTTPError,
    build_client,
    raise_for_supplier_status,
)
from catalog_sync.ingest.throttle import RequestThrottle
from catalog_sync.metrics import (
    record_supplier_request,
    supplier_fetch_duration_seconds,
    supplier_retries_total,
)

logger = logging.getLogger(__name__)

# Anything the primary endpoint can throw that should send us to search
LOOKUP_ERRORS = (SupplierHTTPError, httpx.HTTPError, ValueError)


class NoProductDataError(RuntimeError):
    """Raised when the API answered but carried no usable product payload."""

    pass


class SupplierFetchError(RuntimeError):
    """Raised when every lookup attempt failed."""

    def __init__(self, identifier: str, attempts: int, last_error: Optional[BaseException] = None):
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Failed to fetch {identifier} after {attempts} attempts{detail}")
        self.identifier = identifier
        self.attempts = attempts


class SupplierClient:
    """
    Fetch raw product payloads, one throttled slot per lookup.

    Each attempt calls the product-details endpoint and falls back to the
    search endpoint if that call fails. 429s back off exponentially between
    attempts; other failures retry straight away until attempts run out.
    """

    PRODUCT_DETAILS_PATH = "/product-details"
    SEARCH_PATH = "/search"

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        throttle: Optional[RequestThrottle] = None,
        max_retries: Optional[int] = None,
        backoff_initial: Optional[float] = None,
        default_country: Optional[str] = None,
        search_sort: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._owns_client = http_client is None
        self.http_client = http_client or build_client()
        self.throttle = throttle or RequestThrottle()
        self.max_retries = max_retries if max_retries is not None else settings.supplier_max_retries
        self.backoff_initial = (
            backoff_initial
            if backoff_initial is not None
            else settings.supplier_backoff_initial_seconds
        )
        self.default_country = default_country or settings.supplier_default_country
        self.search_sort = search_sort or settings.supplier_search_sort
        self._sleep = sleep

    async def fetch_product(self, identifier: str, country: Optional[str] = None) -> dict[str, Any]:
        """
        Fetch the raw payload for one product.

        Args:
            identifier: Supplier identifier (ASIN)
            country: Marketplace country code

        Returns:
            Raw product payload (loosely typed mapping)

        Raises:
            NoProductDataError: API returned nothing usable (not retried)
            SupplierFetchError: All attempts failed
        """
        country = country or self.default_country
        return await self.throttle.enqueue(lambda: self._fetch_with_retries(identifier, country))

    async def _fetch_with_retries(self, identifier: str, country: str) -> dict[str, Any]:
        start = time.monotonic()
        backoff = self.backoff_initial
        last_error: Optional[Exception] = None

        try:
            for attempt in range(1, self.max_retries + 1):
                try:
                    return await self._lookup(identifier, country)
                except NoProductDataError:
                    raise
                except RateLimitedError as e:
                    last_error = e
                    logger.warning(
                        f"Rate limited fetching {identifier} "
                        f"(attempt {attempt}/{self.max_retries})"
                    )
                    if attempt < self.max_retries:
                        supplier_retries_total.labels(reason="rate_limited").inc()
                        # Honour a longer Retry-After from upstream
                        await self._sleep(max(backoff, e.retry_after or 0))
                        backoff *= 2
                except LOOKUP_ERRORS as e:
                    last_error = e
                    logger.warning(
                        f"Attempt {attempt}/{self.max_retries} failed for {identifier}: {e}"
                    )
                    if attempt < self.max_retries:
                        supplier_retries_total.labels(reason="error").inc()

            raise SupplierFetchError(identifier, self.max_retries, last_error) from last_error
        finally:
            supplier_fetch_duration_seconds.observe(time.monotonic() - start)

    async def _lookup(self, identifier: str, country: str) -> dict[str, Any]:
        try:
            body = await self._get(
                self.PRODUCT_DETAILS_PATH,
                {"asin": identifier, "country": country},
                endpoint="product_details",
            )
        except LOOKUP_ERRORS as e:
            logger.info(f"Product details failed for {identifier} ({e}), falling back to search")
            return await self._search(identifier, country)

        payload = body.get("data") if isinstance(body, dict) else None
        if not isinstance(payload, dict) or not payload:
            raise NoProductDataError(f"No product data returned for {identifier}")
        return payload

    async def _search(self, identifier: str, country: str) -> dict[str, Any]:
        body = await self._get(
            self.SEARCH_PATH,
            {
                "query": identifier,
                "page": 1,
                "country": country,
                "sort_by": self.search_sort,
            },
            endpoint="search",
        )

        data = body.get("data") if isinstance(body, dict) else None
        products = data.get("products") if isinstance(data, dict) else None
        products = [p for p in products or [] if isinstance(p, dict) and p]
        if not products:
            raise NoProductDataError(f"No search results for {identifier}")

        for product in products:
            if str(product.get("asin", "")).upper() == identifier.upper():
                return product

        logger.info(f"No exact search match for {identifier}, using first result")
        return products[0]

    async def _get(self, path: str, params: dict[str, Any], endpoint: str) -> Any:
        try:
            response = await self.http_client.get(path, params=params)
        except httpx.HTTPError:
            record_supplier_request(endpoint, "transport_error")
            raise

        record_supplier_request(endpoint, str(response.status_code))
        raise_for_supplier_status(response)
        return response.json()

    async def close(self) -> None:
        await self.throttle.close()
        if self._owns_client:
            await self.http_client.aclose()
