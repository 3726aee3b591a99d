"""Caller-facing sync operations: bulk sessions, cancellation, status and single imports."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import IntegrityError

from catalog_sync.config import settings
from catalog_sync.db.models import Product, StockStatus, SyncLogEntry, SyncSession, SyncStatus
from catalog_sync.db.repository import ProductRepository
from catalog_sync.ingest.identifiers import extract_asin, generate_internal_sku
from catalog_sync.ingest.supplier_client import SupplierClient
from catalog_sync.normalize.processor import ProductNormalizer
from catalog_sync.worker.orchestrator import (
    BatchOrchestrator,
    CancellationRegistry,
    ItemResult,
    ProductSyncer,
)
from catalog_sync.worker.sync_log import SyncLogWriter

logger = logging.getLogger(__name__)


class InvalidIdentifierError(ValueError):
    """Raised when input is neither an ASIN nor a product URL containing one."""

    pass


class SessionNotFoundError(LookupError):
    """Raised when a sync session does not exist."""

    pass


class ProductNotFoundError(LookupError):
    """Raised when a product does not exist."""

    pass


@dataclass
class SyncOptions:
    """Options for a bulk sync request."""

    country: Optional[str] = None
    stock_status: Optional[StockStatus] = None


@dataclass
class SyncStartResult:
    """Acknowledgement for a bulk sync request."""

    session_id: Optional[int]
    total_products: int
    message: str

    @property
    def started(self) -> bool:
        return self.session_id is not None


@dataclass
class ImportResult:
    product: Product
    created: bool


@dataclass
class ScheduledRunSummary:
    started: list[int] = field(default_factory=list)
    skipped_users: list[str] = field(default_factory=list)


class SyncService:
    """
    Owns the sync pipeline for one process.

    Holds the throttle-backed supplier client, the cancellation registry and
    the background tasks running sync sessions. Mutating calls return as soon
    as the work is acknowledged; progress is polled through get_sync_status.
    """

    def __init__(
        self,
        repository: Optional[ProductRepository] = None,
        client: Optional[SupplierClient] = None,
        normalizer: Optional[ProductNormalizer] = None,
        registry: Optional[CancellationRegistry] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        error_threshold: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.repository = repository or ProductRepository()
        self.client = client or SupplierClient()
        self.normalizer = normalizer or ProductNormalizer()
        self.registry = registry or CancellationRegistry()
        self.error_threshold = error_threshold or settings.sync_error_threshold
        self.syncer = ProductSyncer(
            self.repository,
            self.client,
            self.normalizer,
            log_writer=SyncLogWriter(self.repository),
            error_threshold=self.error_threshold,
        )
        self.orchestrator = BatchOrchestrator(
            self.repository,
            self.syncer,
            registry=self.registry,
            batch_size=batch_size,
            batch_delay=batch_delay,
            sleep=sleep,
        )
        self._tasks: dict[int, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Bulk sync sessions
    # ------------------------------------------------------------------

    async def start_bulk_sync(
        self,
        user_id: str,
        limit: Optional[int] = None,
        options: Optional[SyncOptions] = None,
    ) -> SyncStartResult:
        """
        Start refreshing up to ``limit`` eligible products in the background.

        No session is created when nothing is eligible.
        """
        options = options or SyncOptions()
        limit = limit or settings.sync_default_limit
        stock_status = options.stock_status.value if options.stock_status else None

        products = await self.repository.fetch_eligible_products(
            user_id,
            limit,
            stock_status=stock_status,
            error_threshold=self.error_threshold,
        )
        if not products:
            logger.info(f"No eligible products to sync for user {user_id}")
            return SyncStartResult(session_id=None, total_products=0, message="No products to sync")

        session = await self.repository.create_session(user_id, len(products))
        self.registry.register(session.id)

        task = asyncio.create_task(self.orchestrator.run(session.id, products, options.country))
        self._tasks[session.id] = task
        task.add_done_callback(lambda _t, sid=session.id: self._tasks.pop(sid, None))

        logger.info(f"Started sync session {session.id} for user {user_id} ({len(products)} products)")
        return SyncStartResult(
            session_id=session.id,
            total_products=len(products),
            message=f"Sync started for {len(products)} products",
        )

    async def cancel_sync(self, session_id: int) -> SyncSession:
        """
        Ask a running session to stop at its next batch boundary.

        Cancelling a session that already finished is a no-op.

        Raises:
            SessionNotFoundError: Unknown session id
        """
        session = await self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Sync session {session_id} not found")
        if session.is_terminal:
            return session

        self.registry.cancel(session_id)
        await self.repository.request_cancel(session_id)
        logger.info(f"Cancellation requested for sync session {session_id}")
        return await self.repository.get_session(session_id)

    async def get_sync_status(
        self,
        session_id: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> SyncSession:
        """
        Snapshot of a session, or of the user's latest session.

        Raises:
            SessionNotFoundError: No matching session
            ValueError: Neither session_id nor user_id given
        """
        if session_id is not None:
            session = await self.repository.get_session(session_id)
        elif user_id is not None:
            session = await self.repository.get_latest_session(user_id)
        else:
            raise ValueError("session_id or user_id is required")

        if session is None:
            raise SessionNotFoundError(
                f"Sync session {session_id} not found" if session_id is not None
                else f"No sync sessions for user {user_id}"
            )
        return session

    async def list_logs(self, session_id: int, limit: int = 200) -> list[SyncLogEntry]:
        if await self.repository.get_session(session_id) is None:
            raise SessionNotFoundError(f"Sync session {session_id} not found")
        return await self.repository.list_log_entries(session_id, limit)

    async def wait_for(self, session_id: int) -> None:
        """Block until the session's background task (if any) is done."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Single products
    # ------------------------------------------------------------------

    async def import_single(
        self,
        identifier: str,
        user_id: str,
        country: Optional[str] = None,
    ) -> ImportResult:
        """
        Fetch one product and store it.

        An ASIN the user already has is refreshed in place, keeping its
        internal SKU.

        Raises:
            InvalidIdentifierError: No ASIN in identifier
            NoProductDataError, SupplierFetchError: Upstream lookup failed
        """
        asin = extract_asin(identifier)
        if asin is None:
            raise InvalidIdentifierError(f"Could not find an ASIN in {identifier!r}")

        country = country or self.client.default_country
        payload = await self.client.fetch_product(asin, country)
        fresh = self.normalizer.normalize(payload, asin, country)

        existing = await self.repository.find_by_asin(user_id, asin)
        if existing is not None:
            return await self._refresh_from_import(existing, fresh)

        values = fresh.to_record()
        values.update(
            user_id=user_id,
            supplier_asin=asin,
            supplier_sku=asin,
            internal_sku=generate_internal_sku(asin),
            scrape_errors=0,
            is_active=True,
        )
        try:
            product = await self.repository.insert_product(values)
        except IntegrityError:
            # A concurrent import of the same ASIN inserted first
            existing = await self.repository.find_by_asin(user_id, asin)
            if existing is None:
                raise
            return await self._refresh_from_import(existing, fresh)
        logger.info(f"Imported new product {product.internal_sku} for user {user_id}")
        return ImportResult(product=product, created=True)

    async def _refresh_from_import(self, existing: Product, fresh) -> ImportResult:
        product = await self.syncer.apply_success(existing, fresh)
        logger.info(f"Refreshed existing product {existing.internal_sku} from import")
        return ImportResult(product=product, created=False)

    async def refresh_product(self, product_id: int, country: Optional[str] = None) -> ItemResult:
        """
        Run the per-item sync path for one product outside any session.

        Raises:
            ProductNotFoundError: Unknown product id
        """
        product = await self.repository.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(f"Product {product_id} not found")
        return await self.syncer.sync_product(product, session_id=None, country=country)

    async def deactivate_products(
        self,
        user_id: str,
        product_ids: Optional[list[int]] = None,
    ) -> int:
        count = await self.repository.deactivate_products(user_id, product_ids)
        logger.info(f"Deactivated {count} products for user {user_id}")
        return count

    async def list_products(
        self,
        user_id: str,
        active: Optional[bool] = None,
        limit: int = 100,
    ) -> list[Product]:
        return await self.repository.list_products(user_id, active=active, limit=limit)

    # ------------------------------------------------------------------
    # Scheduled refresh
    # ------------------------------------------------------------------

    async def sync_all_users(self, limit: Optional[int] = None) -> ScheduledRunSummary:
        """Start a bulk sync for every user with active products, skipping busy ones."""
        limit = limit or settings.auto_sync_limit
        summary = ScheduledRunSummary()

        for user_id in await self.repository.list_sync_user_ids():
            running = await self.repository.get_running_session(user_id)
            if running is not None:
                logger.info(f"Skipping scheduled sync for {user_id}: session {running.id} still running")
                summary.skipped_users.append(user_id)
                continue

            result = await self.start_bulk_sync(user_id, limit)
            if result.started:
                summary.started.append(result.session_id)

        logger.info(
            f"Scheduled sync started {len(summary.started)} sessions, "
            f"skipped {len(summary.skipped_users)} users"
        )
        return summary

    async def close(self) -> None:
        """Stop running sessions and release the supplier client."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.client.close()
