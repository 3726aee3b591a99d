"""Tests for the caller-facing sync operations."""

import asyncio

import pytest

from catalog_sync.db.models import StockStatus, SyncStatus
from catalog_sync.db.repository import ProductRepository
from catalog_sync.ingest.identifiers import extract_asin, generate_internal_sku
from catalog_sync.ingest.supplier_client import NoProductDataError
from catalog_sync.normalize.processor import ProductNormalizer
from catalog_sync.worker.service import (
    InvalidIdentifierError,
    ProductNotFoundError,
    SessionNotFoundError,
    SyncOptions,
    SyncService,
)
from tests.helpers import FakeSupplierClient, asin_for, make_payload, product_values


class StaleLookupRepository(ProductRepository):
    """Misses the first ASIN lookup, as when another import inserts concurrently."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.lookups = 0

    async def find_by_asin(self, user_id, asin):
        self.lookups += 1
        if self.lookups == 1:
            return None
        return await super().find_by_asin(user_id, asin)


def make_service(repository, client, fake_sleep, **kwargs):
    return SyncService(
        repository=repository,
        client=client,
        normalizer=ProductNormalizer(),
        batch_size=kwargs.pop("batch_size", 10),
        batch_delay=0,
        error_threshold=10,
        sleep=fake_sleep,
        **kwargs,
    )


class TestBulkSync:

    @pytest.mark.asyncio
    async def test_nothing_to_do_creates_no_session(self, repository, fake_sleep):
        service = make_service(repository, FakeSupplierClient(), fake_sleep)

        result = await service.start_bulk_sync("user-1", 50)

        assert result.started is False
        assert result.session_id is None
        assert result.total_products == 0
        assert await repository.get_latest_session("user-1") is None

    @pytest.mark.asyncio
    async def test_start_and_poll_until_completed(self, repository, fake_sleep):
        for i in range(12):
            await repository.insert_product(product_values(asin_for(i)))
        client = FakeSupplierClient({asin_for(i): make_payload(asin_for(i)) for i in range(12)})
        service = make_service(repository, client, fake_sleep)

        result = await service.start_bulk_sync("user-1", limit=5)
        assert result.started is True
        assert result.total_products == 5

        await service.wait_for(result.session_id)
        session = await service.get_sync_status(session_id=result.session_id)

        assert session.status == SyncStatus.COMPLETED.value
        assert session.processed_products == 5
        assert session.updated_products == 5
        latest = await service.get_sync_status(user_id="user-1")
        assert latest.id == result.session_id

    @pytest.mark.asyncio
    async def test_stock_status_option(self, repository, fake_sleep):
        await repository.insert_product(product_values(asin_for(1)))
        await repository.insert_product(
            product_values(asin_for(2), stock_status=StockStatus.OUT_OF_STOCK.value)
        )
        client = FakeSupplierClient({asin_for(2): make_payload(asin_for(2))})
        service = make_service(repository, client, fake_sleep)

        result = await service.start_bulk_sync(
            "user-1", 10, SyncOptions(stock_status=StockStatus.OUT_OF_STOCK)
        )
        await service.wait_for(result.session_id)

        assert result.total_products == 1
        assert client.calls == [asin_for(2)]

    @pytest.mark.asyncio
    async def test_cancel_running_session(self, repository, fake_sleep):
        for i in range(20):
            await repository.insert_product(product_values(asin_for(i)))
        gate = asyncio.Event()
        fetching = asyncio.Event()
        client = FakeSupplierClient({asin_for(i): make_payload(asin_for(i)) for i in range(20)})

        async def slow_fetch(identifier, country=None):
            fetching.set()
            await gate.wait()
            return client.payloads[identifier]

        client.fetch_product = slow_fetch
        service = make_service(repository, client, fake_sleep)

        result = await service.start_bulk_sync("user-1", 20)
        await fetching.wait()
        acked = await service.cancel_sync(result.session_id)
        gate.set()
        await service.wait_for(result.session_id)

        assert acked.cancel_requested is True
        session = await service.get_sync_status(session_id=result.session_id)
        assert session.status == SyncStatus.CANCELLED.value
        assert session.processed_products == 10

    @pytest.mark.asyncio
    async def test_cancel_finished_session_is_noop(self, repository, fake_sleep):
        session = await repository.create_session("user-1", 0)
        await repository.finish_session(session.id, SyncStatus.COMPLETED, {})
        service = make_service(repository, FakeSupplierClient(), fake_sleep)

        acked = await service.cancel_sync(session.id)

        assert acked.status == SyncStatus.COMPLETED.value
        assert acked.cancel_requested is False

    @pytest.mark.asyncio
    async def test_unknown_session(self, repository, fake_sleep):
        service = make_service(repository, FakeSupplierClient(), fake_sleep)

        with pytest.raises(SessionNotFoundError):
            await service.cancel_sync(999)
        with pytest.raises(SessionNotFoundError):
            await service.get_sync_status(session_id=999)
        with pytest.raises(SessionNotFoundError):
            await service.list_logs(999)

    @pytest.mark.asyncio
    async def test_scheduled_refresh_skips_busy_users(self, repository, fake_sleep):
        await repository.insert_product(product_values(asin_for(1), user_id="idle"))
        await repository.insert_product(product_values(asin_for(2), user_id="busy"))
        busy = await repository.create_session("busy", 1)
        client = FakeSupplierClient({asin_for(1): make_payload(asin_for(1))})
        service = make_service(repository, client, fake_sleep)

        summary = await service.sync_all_users(limit=10)
        for session_id in summary.started:
            await service.wait_for(session_id)

        assert summary.skipped_users == ["busy"]
        assert len(summary.started) == 1
        assert (await repository.get_session(busy.id)).status == SyncStatus.RUNNING.value


class TestSingleProducts:

    @pytest.mark.asyncio
    async def test_import_creates_product(self, repository, fake_sleep):
        asin = "B0ABCDEF12"
        client = FakeSupplierClient({asin: make_payload(
            asin,
            title="Acme Kettle",
            price="$49.99",
            availability="Only 3 left in stock",
        )})
        service = make_service(repository, client, fake_sleep)

        result = await service.import_single(f"https://www.amazon.com.au/dp/{asin}?th=1", "user-1")

        product = result.product
        assert result.created is True
        assert product.supplier_asin == asin
        assert product.internal_sku.startswith(f"AMZ{asin}")
        assert len(product.internal_sku) == 3 + 10 + 6
        assert float(product.supplier_price) == pytest.approx(74.99)
        assert product.stock_status == StockStatus.LIMITED_STOCK.value
        assert product.stock_quantity == 3
        assert product.is_active is True
        assert await repository.list_price_history(product.id) == []

    @pytest.mark.asyncio
    async def test_import_existing_refreshes_in_place(self, repository, fake_sleep):
        asin = "B0ABCDEF12"
        existing = await repository.insert_product(
            product_values(asin, supplier_price="10.00", scrape_errors=4)
        )
        client = FakeSupplierClient({asin: make_payload(asin, price="$49.99")})
        service = make_service(repository, client, fake_sleep)

        result = await service.import_single(asin.lower(), "user-1")

        assert result.created is False
        assert result.product.id == existing.id
        assert result.product.internal_sku == existing.internal_sku
        assert result.product.scrape_errors == 0
        assert len(await repository.list_price_history(existing.id)) == 1

    @pytest.mark.asyncio
    async def test_import_racing_insert_refreshes_in_place(self, session_factory, fake_sleep):
        asin = "B0ABCDEF12"
        repository = StaleLookupRepository(session_factory)
        winner = await repository.insert_product(product_values(asin, scrape_errors=2))
        client = FakeSupplierClient({asin: make_payload(asin, price="$49.99")})
        service = make_service(repository, client, fake_sleep)

        result = await service.import_single(asin, "user-1")

        assert result.created is False
        assert result.product.id == winner.id
        assert result.product.scrape_errors == 0
        assert len(await repository.list_products("user-1")) == 1

    @pytest.mark.asyncio
    async def test_import_rejects_garbage(self, repository, fake_sleep):
        client = FakeSupplierClient()
        service = make_service(repository, client, fake_sleep)

        with pytest.raises(InvalidIdentifierError):
            await service.import_single("not an asin", "user-1")
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_import_propagates_upstream_errors(self, repository, fake_sleep):
        client = FakeSupplierClient()

        async def no_data(identifier, country=None):
            raise NoProductDataError(f"No product data returned for {identifier}")

        client.fetch_product = no_data
        service = make_service(repository, client, fake_sleep)

        with pytest.raises(NoProductDataError):
            await service.import_single("B0ABCDEF12", "user-1")

    @pytest.mark.asyncio
    async def test_refresh_product(self, repository, fake_sleep):
        product = await repository.insert_product(product_values(asin_for(1), scrape_errors=3))
        client = FakeSupplierClient(failing={asin_for(1)})
        service = make_service(repository, client, fake_sleep)

        result = await service.refresh_product(product.id)

        assert result.ok is False
        assert (await repository.get_product(product.id)).scrape_errors == 4
        with pytest.raises(ProductNotFoundError):
            await service.refresh_product(12345)

    @pytest.mark.asyncio
    async def test_close_stops_client(self, repository, fake_sleep):
        client = FakeSupplierClient()
        service = make_service(repository, client, fake_sleep)

        await service.close()

        assert client.closed is True


class TestIdentifiers:

    @pytest.mark.parametrize("value,expected", [
        ("B0ABCDEF12", "B0ABCDEF12"),
        ("  b0abcdef12 ", "B0ABCDEF12"),
        ("https://www.amazon.com.au/dp/B0ABCDEF12", "B0ABCDEF12"),
        ("https://www.amazon.com/Some-Product-Name/dp/B0ABCDEF12/ref=sr_1_1", "B0ABCDEF12"),
        ("https://www.amazon.com/gp/product/B0ABCDEF12?psc=1", "B0ABCDEF12"),
        ("https://www.amazon.com/product/B0ABCDEF12", "B0ABCDEF12"),
        ("https://www.amazon.com/item?asin=B0ABCDEF12", "B0ABCDEF12"),
        ("https://www.amazon.com/B0ABCDEF12", "B0ABCDEF12"),
        ("www.amazon.com.au/dp/B0ABCDEF12", "B0ABCDEF12"),
        ("https://www.amazon.com/s?k=kettle", None),
        ("kettle", None),
        ("", None),
    ])
    def test_extract_asin(self, value, expected):
        assert extract_asin(value) == expected

    def test_internal_sku(self):
        assert generate_internal_sku("b0abcdef12", now_ms=1700000123456) == "AMZB0ABCDEF12123456"
