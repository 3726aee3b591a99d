"""Bulk refresh execution: sequential batches, concurrent items within a batch."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from catalog_sync.config import settings
from catalog_sync.db.models import LogAction, Product, SyncStatus
from catalog_sync.logging_config import get_logger
from catalog_sync.metrics import (
    record_item_result,
    record_price_change,
    record_session_finished,
    sync_sessions_active,
)
from catalog_sync.normalize.changes import detect_changes, price_changed
from catalog_sync.normalize.processor import NormalizedProduct
from catalog_sync.worker.sync_log import SyncLogWriter

logger = logging.getLogger(__name__)


def truncate_message(message: str, max_length: Optional[int] = None) -> str:
    max_length = max_length or settings.sync_error_message_max_length
    if len(message) <= max_length:
        return message
    return message[: max_length - 3] + "..."


@dataclass
class ItemResult:
    """Outcome of syncing one product."""

    product_id: int
    ok: bool
    error: Optional[str] = None
    deactivated: bool = False
    changed_fields: tuple[str, ...] = ()
    product: Optional[Product] = None


@dataclass
class SyncCounters:
    """Running counters of one session."""

    processed: int = 0
    updated: int = 0
    failed: int = 0

    def add(self, result: ItemResult) -> None:
        self.processed += 1
        # Every success counts as an update, changed or not
        if result.ok:
            self.updated += 1
        else:
            self.failed += 1

    def as_values(self) -> dict[str, int]:
        return {
            "processed_products": self.processed,
            "updated_products": self.updated,
            "failed_products": self.failed,
        }


class CancellationRegistry:
    """In-process cancellation signals keyed by session id."""

    def __init__(self):
        self._events: dict[int, asyncio.Event] = {}

    def register(self, session_id: int) -> asyncio.Event:
        return self._events.setdefault(session_id, asyncio.Event())

    def cancel(self, session_id: int) -> bool:
        """
        Signal a session to stop at its next batch boundary.

        Returns:
            True if the session is running in this process
        """
        event = self._events.get(session_id)
        if event is None:
            return False
        event.set()
        return True

    def is_cancelled(self, session_id: int) -> bool:
        event = self._events.get(session_id)
        return event is not None and event.is_set()

    def discard(self, session_id: int) -> None:
        self._events.pop(session_id, None)


class ProductSyncer:
    """Fetch, normalize and persist one product, isolating its failures."""

    def __init__(
        self,
        repository,
        client,
        normalizer,
        log_writer: Optional[SyncLogWriter] = None,
        error_threshold: Optional[int] = None,
        error_message_max_length: Optional[int] = None,
    ):
        self.repository = repository
        self.client = client
        self.normalizer = normalizer
        self.log_writer = log_writer or SyncLogWriter(repository)
        self.error_threshold = error_threshold or settings.sync_error_threshold
        self.error_message_max_length = (
            error_message_max_length or settings.sync_error_message_max_length
        )

    async def sync_product(
        self,
        product: Product,
        session_id: Optional[int] = None,
        country: Optional[str] = None,
    ) -> ItemResult:
        """
        Refresh one product from the supplier. Never raises.

        Args:
            product: Stored product
            session_id: Owning sync session, if any (used for the audit trail)
            country: Marketplace country

        Returns:
            ItemResult describing success or failure
        """
        asin = product.supplier_asin
        await self.log_writer.write(session_id, product.id, LogAction.PROCESSING, f"Syncing {asin}")

        try:
            payload = await self.client.fetch_product(asin, country)
            fresh = self.normalizer.normalize(payload, asin, country)
            changes = detect_changes(product, fresh)
            updated = await self.apply_success(product, fresh)
        except Exception as e:
            return await self._record_failure(product, e, session_id)

        record_item_result("updated")
        summary = ", ".join(sorted(changes)) if changes else "no changes"
        await self.log_writer.write(
            session_id, product.id, LogAction.SUCCESS, f"Updated {asin}: {summary}"
        )
        return ItemResult(
            product_id=product.id,
            ok=True,
            changed_fields=tuple(sorted(changes)),
            product=updated,
        )

    async def apply_success(self, product: Product, fresh: NormalizedProduct) -> Optional[Product]:
        """
        Write a fresh normalization over a stored product.

        Resets the error counter, reactivates the product and appends price
        history when the supplier price moved.
        """
        log = get_logger(__name__, product_id=product.id, asin=product.supplier_asin)
        values = fresh.to_record(include_identity=False)
        values.update(scrape_errors=0, is_active=True)
        updated = await self.repository.update_product(product.id, values)

        if price_changed(product.supplier_price, fresh.supplier_price):
            try:
                await self.repository.add_price_history(
                    product.id,
                    fresh.supplier_price,
                    fresh.our_price,
                    fresh.stock_status.value,
                )
            except Exception as e:
                log.warning(f"Failed to record price history for product {product.id}: {e}")
            record_price_change(float(product.supplier_price or 0), float(fresh.supplier_price))
            log.info(
                f"Price change for {product.supplier_asin}: "
                f"{product.supplier_price} -> {fresh.supplier_price}"
            )

        return updated

    async def _record_failure(
        self,
        product: Product,
        error: Exception,
        session_id: Optional[int],
    ) -> ItemResult:
        message = truncate_message(str(error) or type(error).__name__, self.error_message_max_length)
        log = get_logger(
            __name__, session_id=session_id, product_id=product.id, asin=product.supplier_asin
        )
        error_count = (product.scrape_errors or 0) + 1
        deactivate = error_count >= self.error_threshold

        try:
            await self.repository.record_product_failure(product.id, error_count, not deactivate)
        except Exception as write_error:
            log.warning(f"Failed to record error count for product {product.id}: {write_error}")

        record_item_result("failed")
        if deactivate:
            record_item_result("deactivated")
            log.warning(
                f"Deactivated {product.supplier_asin} after {error_count} consecutive failures"
            )
        else:
            log.warning(f"Sync failed for {product.supplier_asin} ({error_count}): {message}")

        await self.log_writer.write(session_id, product.id, LogAction.ERROR, message)
        return ItemResult(
            product_id=product.id,
            ok=False,
            error=message,
            deactivated=deactivate,
        )


class BatchOrchestrator:
    """
    Drive one sync session from Running to a terminal status.

    Cancellation is cooperative and only checked at batch boundaries; items
    already in flight always finish.
    """

    def __init__(
        self,
        repository,
        syncer: ProductSyncer,
        registry: Optional[CancellationRegistry] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.repository = repository
        self.syncer = syncer
        self.registry = registry or CancellationRegistry()
        self.batch_size = batch_size or settings.sync_batch_size
        self.batch_delay = (
            batch_delay if batch_delay is not None else settings.sync_batch_delay_seconds
        )
        self._sleep = sleep

    def split_batches(self, products: list[Product]) -> list[list[Product]]:
        size = self.batch_size
        return [products[i:i + size] for i in range(0, len(products), size)]

    async def run(
        self,
        session_id: int,
        products: list[Product],
        country: Optional[str] = None,
    ) -> SyncStatus:
        """
        Process every batch of a session and record its terminal status.

        Returns:
            The terminal SyncStatus
        """
        log = get_logger(__name__, session_id=session_id)
        self.registry.register(session_id)
        counters = SyncCounters()
        status = SyncStatus.FAILED
        started = time.monotonic()
        sync_sessions_active.inc()

        batches = self.split_batches(products)
        log.info(f"Sync session {session_id} starting: {len(products)} products in {len(batches)} batches")

        try:
            for index, batch in enumerate(batches, start=1):
                if await self._cancel_requested(session_id):
                    status = SyncStatus.CANCELLED
                    log.info(f"Sync session {session_id} cancelled before batch {index}")
                    break

                results = await asyncio.gather(
                    *(self.syncer.sync_product(product, session_id, country) for product in batch)
                )
                for result in results:
                    counters.add(result)

                await self.repository.update_session(session_id, counters.as_values())
                log.info(
                    f"Batch {index}/{len(batches)} done: processed={counters.processed} "
                    f"updated={counters.updated} failed={counters.failed}"
                )

                if index < len(batches):
                    await self._sleep(self.batch_delay)
            else:
                if await self._cancel_requested(session_id):
                    status = SyncStatus.CANCELLED
                else:
                    status = SyncStatus.COMPLETED

            await self.repository.finish_session(session_id, status, counters.as_values())
            log.info(f"Sync session {session_id} {status.value}")

        except asyncio.CancelledError:
            # Task torn down (shutdown), not an operator cancel
            status = SyncStatus.CANCELLED
            await self._finish_quietly(session_id, status, counters, "Sync interrupted by shutdown")
            raise

        except Exception as e:
            status = SyncStatus.FAILED
            log.error(f"Sync session {session_id} failed: {e}", exc_info=True)
            await self._finish_quietly(
                session_id,
                status,
                counters,
                truncate_message(str(e) or type(e).__name__, self.syncer.error_message_max_length),
            )

        finally:
            self.registry.discard(session_id)
            sync_sessions_active.dec()
            record_session_finished(status.value, time.monotonic() - started)

        return status

    async def _cancel_requested(self, session_id: int) -> bool:
        if self.registry.is_cancelled(session_id):
            return True
        # Cancels issued by another process only reach the database
        session = await self.repository.get_session(session_id)
        return bool(session is not None and session.cancel_requested)

    async def _finish_quietly(
        self,
        session_id: int,
        status: SyncStatus,
        counters: SyncCounters,
        error_message: str,
    ) -> None:
        try:
            await self.repository.finish_session(
                session_id, status, counters.as_values(), error_message=error_message
            )
        except Exception as e:
            logger.error(f"Could not record {status.value} for session {session_id}: {e}")
