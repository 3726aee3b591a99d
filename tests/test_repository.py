"""Tests for the product and session store."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from catalog_sync.db.models import StockStatus, SyncStatus
from tests.helpers import product_values


class TestProducts:

    @pytest.mark.asyncio
    async def test_eligible_products_filter_and_order(self, repository):
        now = datetime.utcnow()
        await repository.insert_product(product_values("B0AAAAAAA1", last_scraped=now))
        await repository.insert_product(product_values("B0AAAAAAA2", last_scraped=now - timedelta(hours=5)))
        await repository.insert_product(product_values("B0AAAAAAA3"))  # never synced
        await repository.insert_product(product_values("B0AAAAAAA4", is_active=False))
        await repository.insert_product(product_values("B0AAAAAAA5", scrape_errors=10))
        await repository.insert_product(product_values("B0AAAAAAA6", user_id="someone-else"))

        products = await repository.fetch_eligible_products("user-1", limit=10, error_threshold=10)

        assert [p.supplier_asin for p in products] == ["B0AAAAAAA3", "B0AAAAAAA2", "B0AAAAAAA1"]

    @pytest.mark.asyncio
    async def test_eligible_products_limit_and_stock_filter(self, repository):
        await repository.insert_product(product_values("B0AAAAAAA1"))
        await repository.insert_product(
            product_values("B0AAAAAAA2", stock_status=StockStatus.OUT_OF_STOCK.value)
        )
        await repository.insert_product(product_values("B0AAAAAAA3"))

        limited = await repository.fetch_eligible_products("user-1", limit=1)
        oos = await repository.fetch_eligible_products(
            "user-1", limit=10, stock_status=StockStatus.OUT_OF_STOCK.value
        )

        assert len(limited) == 1
        assert [p.supplier_asin for p in oos] == ["B0AAAAAAA2"]

    @pytest.mark.asyncio
    async def test_update_and_failure_recording(self, repository):
        product = await repository.insert_product(product_values("B0AAAAAAA1", scrape_errors=2))

        updated = await repository.update_product(product.id, {"title": "New title"})
        assert updated.title == "New title"

        await repository.record_product_failure(product.id, 10, is_active=False)
        stored = await repository.get_product(product.id)
        assert stored.scrape_errors == 10
        assert stored.is_active is False
        assert stored.last_scraped is not None

    @pytest.mark.asyncio
    async def test_deactivate_products(self, repository):
        a = await repository.insert_product(product_values("B0AAAAAAA1"))
        await repository.insert_product(product_values("B0AAAAAAA2"))
        await repository.insert_product(product_values("B0AAAAAAA3", user_id="user-2"))

        assert await repository.deactivate_products("user-1", [a.id]) == 1
        assert await repository.deactivate_products("user-1") == 1

        active = await repository.list_products("user-1", active=True)
        inactive = await repository.list_products("user-1", active=False)
        assert active == []
        assert len(inactive) == 2
        assert len(await repository.list_products("user-2", active=True)) == 1

    @pytest.mark.asyncio
    async def test_price_history_is_appended(self, repository):
        product = await repository.insert_product(product_values("B0AAAAAAA1"))

        await repository.add_price_history(product.id, Decimal("10.00"), Decimal("12.30"), "In Stock")
        await repository.add_price_history(product.id, Decimal("11.00"), Decimal("13.50"), "In Stock")

        history = await repository.list_price_history(product.id)
        assert [h.supplier_price for h in history] == [Decimal("10.00"), Decimal("11.00")]

    @pytest.mark.asyncio
    async def test_sync_user_ids(self, repository):
        await repository.insert_product(product_values("B0AAAAAAA1", user_id="a"))
        await repository.insert_product(product_values("B0AAAAAAA2", user_id="b", is_active=False))

        assert await repository.list_sync_user_ids() == ["a"]


class TestSessions:

    @pytest.mark.asyncio
    async def test_finish_only_moves_running_sessions(self, repository):
        session = await repository.create_session("user-1", 5)
        values = {"processed_products": 5, "updated_products": 4, "failed_products": 1}

        assert await repository.finish_session(session.id, SyncStatus.COMPLETED, values) is True
        assert await repository.finish_session(
            session.id, SyncStatus.FAILED, {"processed_products": 0}, error_message="late"
        ) is False

        stored = await repository.get_session(session.id)
        assert stored.status == SyncStatus.COMPLETED.value
        assert stored.processed_products == 5
        assert stored.error_message is None
        assert stored.completed_at is not None
        assert stored.progress_percent == 100.0

    @pytest.mark.asyncio
    async def test_counters_frozen_after_terminal(self, repository):
        session = await repository.create_session("user-1", 5)
        await repository.finish_session(session.id, SyncStatus.CANCELLED, {"processed_products": 2})

        assert await repository.update_session(session.id, {"processed_products": 5}) is False
        assert await repository.request_cancel(session.id) is False
        assert (await repository.get_session(session.id)).processed_products == 2

    @pytest.mark.asyncio
    async def test_latest_and_running_session(self, repository):
        first = await repository.create_session("user-1", 1)
        await repository.finish_session(first.id, SyncStatus.COMPLETED, {})
        second = await repository.create_session("user-1", 2)

        latest = await repository.get_latest_session("user-1")
        running = await repository.get_running_session("user-1")

        assert latest.id == second.id
        assert running.id == second.id
        assert await repository.get_latest_session("nobody") is None

    @pytest.mark.asyncio
    async def test_log_entries_newest_first(self, repository):
        session = await repository.create_session("user-1", 1)
        await repository.add_log_entry(session.id, None, "processing", "first")
        await repository.add_log_entry(session.id, 7, "success", "second")

        entries = await repository.list_log_entries(session.id)

        assert [e.message for e in entries] == ["second", "first"]
        assert entries[0].product_id == 7
