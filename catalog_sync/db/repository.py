"""Product and sync-session store used by the sync pipeline.

Every method opens its own short-lived session so concurrent batch items
never share a transaction.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import settings
from catalog_sync.db.models import (
    PriceHistory,
    Product,
    SyncLogEntry,
    SyncSession,
    SyncStatus,
)

logger = logging.getLogger(__name__)


class ProductRepository:
    """Async data access for products, price history and sync sessions."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        if session_factory is None:
            from catalog_sync.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def fetch_eligible_products(
        self,
        user_id: str,
        limit: int,
        stock_status: Optional[str] = None,
        error_threshold: Optional[int] = None,
    ) -> list[Product]:
        """
        Load products due for a refresh, least recently synced first.

        Args:
            user_id: Owning user
            limit: Maximum number of products
            stock_status: Optional stock status filter
            error_threshold: Products at or above this error count are skipped

        Returns:
            Detached Product objects
        """
        threshold = error_threshold if error_threshold is not None else settings.sync_error_threshold

        query = (
            select(Product)
            .where(
                Product.user_id == user_id,
                Product.is_active.is_(True),
                Product.scrape_errors < threshold,
            )
            .order_by(Product.last_scraped.asc().nullsfirst(), Product.id.asc())
            .limit(limit)
        )
        if stock_status:
            query = query.where(Product.stock_status == stock_status)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def get_product(self, product_id: int) -> Optional[Product]:
        async with self.session_factory() as db:
            return await db.get(Product, product_id)

    async def find_by_asin(self, user_id: str, asin: str) -> Optional[Product]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Product).where(
                    Product.user_id == user_id,
                    Product.supplier_asin == asin,
                )
            )
            return result.scalar_one_or_none()

    async def list_products(
        self,
        user_id: str,
        active: Optional[bool] = None,
        limit: int = 100,
    ) -> list[Product]:
        query = (
            select(Product)
            .where(Product.user_id == user_id)
            .order_by(Product.updated_at.desc())
            .limit(limit)
        )
        if active is not None:
            query = query.where(Product.is_active.is_(active))

        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def list_sync_user_ids(self) -> list[str]:
        """Users that own at least one active product."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(Product.user_id).where(Product.is_active.is_(True)).distinct()
            )
            return [row[0] for row in result.all()]

    async def insert_product(self, values: dict[str, Any]) -> Product:
        async with self.session_factory() as db:
            product = Product(**values)
            db.add(product)
            await db.commit()
            await db.refresh(product)
            return product

    async def update_product(self, product_id: int, values: dict[str, Any]) -> Optional[Product]:
        """Apply values to a product and return the refreshed row."""
        values = {**values, "updated_at": datetime.utcnow()}
        async with self.session_factory() as db:
            await db.execute(update(Product).where(Product.id == product_id).values(**values))
            await db.commit()
            return await db.get(Product, product_id, populate_existing=True)

    async def record_product_failure(
        self,
        product_id: int,
        error_count: int,
        is_active: bool,
    ) -> None:
        """Store the consecutive-error counter and active flag after a failed sync."""
        async with self.session_factory() as db:
            await db.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(
                    scrape_errors=error_count,
                    is_active=is_active,
                    last_scraped=datetime.utcnow(),
                )
            )
            await db.commit()

    async def deactivate_products(
        self,
        user_id: str,
        product_ids: Optional[list[int]] = None,
    ) -> int:
        """
        Soft-delete products (rows are kept, only the active flag changes).

        Args:
            user_id: Owning user
            product_ids: Products to deactivate; all of the user's products if omitted

        Returns:
            Number of rows changed
        """
        stmt = (
            update(Product)
            .where(Product.user_id == user_id, Product.is_active.is_(True))
            .values(is_active=False, updated_at=datetime.utcnow())
        )
        if product_ids is not None:
            stmt = stmt.where(Product.id.in_(product_ids))

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Price history
    # ------------------------------------------------------------------

    async def add_price_history(
        self,
        product_id: int,
        supplier_price: Decimal,
        our_price: Decimal,
        stock_status: Optional[str],
    ) -> None:
        async with self.session_factory() as db:
            db.add(
                PriceHistory(
                    product_id=product_id,
                    supplier_price=supplier_price,
                    our_price=our_price,
                    stock_status=stock_status,
                    recorded_at=datetime.utcnow(),
                )
            )
            await db.commit()

    async def list_price_history(self, product_id: int) -> list[PriceHistory]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PriceHistory)
                .where(PriceHistory.product_id == product_id)
                .order_by(PriceHistory.recorded_at.asc(), PriceHistory.id.asc())
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Sync sessions
    # ------------------------------------------------------------------

    async def create_session(self, user_id: str, total_products: int) -> SyncSession:
        async with self.session_factory() as db:
            session = SyncSession(
                user_id=user_id,
                total_products=total_products,
                status=SyncStatus.RUNNING.value,
                started_at=datetime.utcnow(),
            )
            db.add(session)
            await db.commit()
            await db.refresh(session)
            return session

    async def get_session(self, session_id: int) -> Optional[SyncSession]:
        async with self.session_factory() as db:
            return await db.get(SyncSession, session_id, populate_existing=True)

    async def get_latest_session(self, user_id: str) -> Optional[SyncSession]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(SyncSession)
                .where(SyncSession.user_id == user_id)
                .order_by(SyncSession.started_at.desc(), SyncSession.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_running_session(self, user_id: str) -> Optional[SyncSession]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(SyncSession)
                .where(
                    SyncSession.user_id == user_id,
                    SyncSession.status == SyncStatus.RUNNING.value,
                )
                .order_by(SyncSession.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def update_session(self, session_id: int, values: dict[str, Any]) -> bool:
        """
        Persist running counters. Terminal sessions are left untouched.

        Returns:
            True if a running session was updated
        """
        async with self.session_factory() as db:
            result = await db.execute(
                update(SyncSession)
                .where(
                    SyncSession.id == session_id,
                    SyncSession.status == SyncStatus.RUNNING.value,
                )
                .values(**values)
            )
            await db.commit()
            return bool(result.rowcount)

    async def request_cancel(self, session_id: int) -> bool:
        """Set the persisted cancellation flag on a running session."""
        return await self.update_session(session_id, {"cancel_requested": True})

    async def finish_session(
        self,
        session_id: int,
        status: SyncStatus,
        values: dict[str, Any],
        error_message: Optional[str] = None,
    ) -> bool:
        """
        Move a running session to a terminal status, freezing its counters.

        Returns:
            False if the session had already left RUNNING
        """
        return await self.update_session(
            session_id,
            {
                **values,
                "status": status.value,
                "completed_at": datetime.utcnow(),
                "error_message": error_message,
            },
        )

    # ------------------------------------------------------------------
    # Sync log
    # ------------------------------------------------------------------

    async def add_log_entry(
        self,
        session_id: int,
        product_id: Optional[int],
        action: str,
        message: str,
    ) -> None:
        async with self.session_factory() as db:
            db.add(
                SyncLogEntry(
                    session_id=session_id,
                    product_id=product_id,
                    action=action,
                    message=message,
                    created_at=datetime.utcnow(),
                )
            )
            await db.commit()

    async def list_log_entries(self, session_id: int, limit: int = 200) -> list[SyncLogEntry]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(SyncLogEntry)
                .where(SyncLogEntry.session_id == session_id)
                .order_by(SyncLogEntry.created_at.desc(), SyncLogEntry.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
