"""
Auto-cleanup of archived orders.

Archived orders carry an ``autoDeleteDate``; once it has passed, the sweep
deletes them for good. CleanupScheduler runs the sweep at start-up and then
on a fixed interval as a background asyncio task. A sweep that is still
running when the next one is due (or when a manual cleanup is requested) is
not overlapped; the later request is skipped.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import TypeAdapter, ValidationError

from . import config, schemas
from .clients.document_store import DocumentStoreClient

logger = logging.getLogger(__name__)

ORDERS = "orders"

_timestamp = TypeAdapter(datetime)


def _auto_delete_date(document: dict) -> Optional[datetime]:
    value = document.get("autoDeleteDate")
    if not value:
        return None
    try:
        return schemas.as_utc(_timestamp.validate_python(value))
    except ValidationError:
        logger.warning(f"Order {document.get('id')} has an unreadable autoDeleteDate: {value!r}")
        return None


def is_expired(document: dict, now: datetime) -> bool:
    """Whether an order document is archived and past its auto-delete date."""
    if not document.get("isArchived"):
        return False
    auto_delete_date = _auto_delete_date(document)
    return auto_delete_date is not None and now >= auto_delete_date


class AutoCleanupService:
    def __init__(self, store: DocumentStoreClient):
        self.store = store

    async def _expired(self, now: datetime) -> List[dict]:
        orders = await self.store.list(ORDERS)
        return [order for order in orders if is_expired(order, now)]

    async def cleanup_expired_orders(self, now: Optional[datetime] = None) -> schemas.CleanupResult:
        """
        Delete every archived order whose auto-delete date has passed.

        A failed delete is logged and the sweep moves on to the next order.

        Args:
            now: Reference time (defaults to the current UTC time)

        Raises:
            httpx.HTTPError: If the orders cannot be listed
        """
        now = schemas.as_utc(now) if now else schemas.utcnow()
        expired = await self._expired(now)
        logger.info(f"Found {len(expired)} orders ready for auto-deletion")

        result = schemas.CleanupResult()
        for order in expired:
            try:
                await self.store.delete(ORDERS, order["id"])
                result.deleted_count += 1
            except Exception as e:
                logger.warning(f"Auto-cleanup failed to delete order {order.get('orderNumber', order['id'])}: {e}")
                result.failed.append(str(order["id"]))

        if result.deleted_count:
            logger.info(f"Auto-cleanup: deleted {result.deleted_count} expired orders")
        return result

    async def get_cleanup_stats(
        self,
        now: Optional[datetime] = None,
        next_cleanup: Optional[datetime] = None,
    ) -> schemas.CleanupStats:
        now = schemas.as_utc(now) if now else schemas.utcnow()
        orders = await self.store.list(ORDERS)
        archived = [order for order in orders if order.get("isArchived")]
        return schemas.CleanupStats(
            total_archived=len(archived),
            expired_count=sum(1 for order in archived if is_expired(order, now)),
            next_cleanup=next_cleanup or now + timedelta(seconds=config.CLEANUP_INTERVAL_SECONDS),
        )


class CleanupScheduler:
    """
    Recurring cleanup sweep.

    Args:
        service: Cleanup service the sweeps run on
        interval: Seconds between sweeps (defaults to CLEANUP_INTERVAL_SECONDS)
    """

    def __init__(self, service: AutoCleanupService, interval: Optional[float] = None):
        self.service = service
        self.interval = config.CLEANUP_INTERVAL_SECONDS if interval is None else interval
        self.next_run: Optional[datetime] = None
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: Optional[datetime] = None) -> schemas.CleanupResult:
        """Run one sweep unless one is already in progress (then it is skipped)."""
        if self._lock.locked():
            logger.info("Cleanup already in progress, skipping")
            return schemas.CleanupResult(skipped=True)
        async with self._lock:
            return await self.service.cleanup_expired_orders(now)

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Auto-cleanup error: {e}")
            self.next_run = schemas.utcnow() + timedelta(seconds=self.interval)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start sweeping now and then every ``interval`` seconds."""
        if self.running:
            return
        logger.info(f"Starting auto-cleanup every {self.interval:.0f}s")
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Auto-cleanup stopped")

    async def stats(self) -> schemas.CleanupStats:
        return await self.service.get_cleanup_stats(next_cleanup=self.next_run)
