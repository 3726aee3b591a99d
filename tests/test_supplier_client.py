"""Tests for supplier lookups against a mocked upstream."""

import httpx
import pytest

from catalog_sync.ingest.supplier_client import (
    NoProductDataError,
    SupplierClient,
    SupplierFetchError,
)
from catalog_sync.ingest.throttle import RequestThrottle

BASE_URL = "https://supplier.test"


def make_client(handler, sleep, max_retries=3):
    http_client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return SupplierClient(
        http_client=http_client,
        throttle=RequestThrottle(delay_seconds=0),
        max_retries=max_retries,
        backoff_initial=10,
        default_country="AU",
        search_sort="RELEVANCE",
        sleep=sleep,
    )


class TestSupplierClient:
    """Retry, backoff and fallback behavior."""

    @pytest.mark.asyncio
    async def test_primary_endpoint_payload(self, fake_sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"asin": "B0ABCDEF12", "product_title": "Widget"}})

        client = make_client(handler, fake_sleep)
        payload = await client.fetch_product("B0ABCDEF12", "AU")

        assert payload["product_title"] == "Widget"
        assert len(seen) == 1
        assert seen[0].url.path == "/product-details"
        assert seen[0].url.params["asin"] == "B0ABCDEF12"
        assert seen[0].url.params["country"] == "AU"
        await client.close()

    @pytest.mark.asyncio
    async def test_always_rate_limited_exhausts_attempts(self, fake_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(429)

        client = make_client(handler, fake_sleep)
        with pytest.raises(SupplierFetchError) as exc_info:
            await client.fetch_product("B0ABCDEF12")

        assert "B0ABCDEF12" in str(exc_info.value)
        assert "3 attempts" in str(exc_info.value)
        assert exc_info.value.attempts == 3
        # Doubling backoff between attempts, none after the last
        assert fake_sleep.calls == [10, 20]
        # Each attempt tries details then search
        assert calls == ["/product-details", "/search"] * 3
        await client.close()

    @pytest.mark.asyncio
    async def test_falls_back_to_search_exact_match(self, fake_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/product-details":
                return httpx.Response(500)
            assert request.url.params["query"] == "B0ABCDEF12"
            assert request.url.params["page"] == "1"
            assert request.url.params["sort_by"] == "RELEVANCE"
            return httpx.Response(200, json={"data": {"products": [
                {"asin": "B0OTHER000", "product_title": "Other"},
                {"asin": "B0ABCDEF12", "product_title": "Exact"},
            ]}})

        client = make_client(handler, fake_sleep)
        payload = await client.fetch_product("B0ABCDEF12")

        assert payload["product_title"] == "Exact"
        assert fake_sleep.calls == []
        await client.close()

    @pytest.mark.asyncio
    async def test_search_without_exact_match_uses_first(self, fake_sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/product-details":
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"data": {"products": [
                {"asin": "B0FIRST000", "product_title": "First"},
                {"asin": "B0SECOND00", "product_title": "Second"},
            ]}})

        client = make_client(handler, fake_sleep)
        payload = await client.fetch_product("B0ABCDEF12")

        assert payload["product_title"] == "First"
        await client.close()

    @pytest.mark.asyncio
    async def test_empty_payload_is_not_retried(self, fake_sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(200, json={"data": {}})

        client = make_client(handler, fake_sleep)
        with pytest.raises(NoProductDataError):
            await client.fetch_product("B0ABCDEF12")

        assert calls == ["/product-details"]
        await client.close()

    @pytest.mark.asyncio
    async def test_other_errors_retry_without_backoff(self, fake_sleep):
        attempts = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/search":
                attempts["n"] += 1
                if attempts["n"] < 2:
                    return httpx.Response(503)
                return httpx.Response(200, json={"data": {"products": [{"asin": "B0ABCDEF12"}]}})
            return httpx.Response(502)

        client = make_client(handler, fake_sleep)
        payload = await client.fetch_product("B0ABCDEF12")

        assert payload == {"asin": "B0ABCDEF12"}
        assert attempts["n"] == 2
        assert fake_sleep.calls == []
        await client.close()

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self, fake_sleep):
        responses = iter([429, 429, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/search":
                return httpx.Response(429)
            code = next(responses)
            if code == 200:
                return httpx.Response(200, json={"data": {"asin": "B0ABCDEF12", "product_title": "Widget"}})
            return httpx.Response(code)

        client = make_client(handler, fake_sleep)
        payload = await client.fetch_product("B0ABCDEF12")

        assert payload["product_title"] == "Widget"
        assert fake_sleep.calls == [10, 20]
        await client.close()
