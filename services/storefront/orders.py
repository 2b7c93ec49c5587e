"""
Order lifecycle: status progression, tracking history, cancellation and
archival, visibility and listings.

The snapshot fields written at checkout (items, amounts, customer info,
shipping address, payment method) are carried through every write unchanged;
only the status/tracking overlay is modified here.
"""
import logging
from datetime import date, timedelta
from typing import List, Optional

from . import config, schemas, validators
from .clients.document_store import DocumentStoreClient
from .errors import CancellationNotAllowed, InvalidTransition, NotFound
from .inventory import InventoryStore
from .notifications import (
    NotificationSink,
    customer_cancellation_notice,
    refund_notice,
    removal_notice,
)
from .workflow import Workflow

logger = logging.getLogger(__name__)

ORDERS = "orders"
PROCESSING_LOCATIONS = "processingLocations"
SYSTEM_ACTOR = "System"

# Order fields written by the lifecycle service
OVERLAY_FIELDS = {
    "order_status",
    "tracking_history",
    "current_location",
    "processing_notes",
    "last_updated",
    "updated_by",
    "cancellation_reason",
    "cancelled_at",
    "cancelled_by",
    "is_archived",
    "archived_at",
    "archived_reason",
    "archived_by",
    "auto_delete_date",
}


def status_description(status: str, location: Optional[schemas.ProcessingLocation] = None) -> str:
    """Human description of a status change for the tracking history."""
    if status == "processing":
        return f"Order is being processed at {location.name}" if location else "Order is being processed"
    if status == "shipped":
        return f"Order shipped from {location.name}" if location else "Order has been shipped"
    descriptions = {
        "pending": "Order received and pending confirmation",
        "confirmed": "Order confirmed and payment verified",
        "delivered": "Order has been delivered to customer",
        "cancelled": "Order has been cancelled",
    }
    return descriptions.get(status, "Status updated")


def sort_orders(orders: List[schemas.Order]) -> List[schemas.Order]:
    """Newest first, with cancelled orders after all active ones."""
    by_date = sorted(orders, key=lambda o: schemas.as_utc(o.order_date), reverse=True)
    return sorted(by_date, key=lambda o: o.order_status == schemas.OrderStatus.CANCELLED.value)


class OrderLifecycleService:
    def __init__(self, store: DocumentStoreClient, inventory: InventoryStore, notifications: NotificationSink):
        self.store = store
        self.inventory = inventory
        self.notifications = notifications

    async def get_order(self, order_id: str) -> schemas.Order:
        """
        Load an order by id.

        Raises:
            NotFound: If the order does not exist
        """
        document = await self.store.get(ORDERS, order_id)
        if document is None:
            raise NotFound("order", order_id)
        return schemas.Order.model_validate(document)

    async def find_by_order_number(self, order_number: str) -> schemas.Order:
        """
        Load an order by its ORD-... number.

        Raises:
            NotFound: If no order carries the number
        """
        documents = await self.store.list(ORDERS, orderNumber=order_number)
        if not documents:
            raise NotFound("order", order_number)
        return schemas.Order.model_validate(documents[0])

    async def get_tracking(self, order_id: str) -> List[schemas.OrderTracking]:
        order = await self.get_order(order_id)
        return order.tracking_history

    async def _save(self, order: schemas.Order) -> schemas.Order:
        """Write the status/tracking overlay only; the checkout snapshot is left as stored."""
        overlay = order.model_dump(mode="json", by_alias=True, include=OVERLAY_FIELDS)
        saved = await self.store.patch(ORDERS, order.id, overlay)
        return schemas.Order.model_validate(saved)

    async def list_processing_locations(self) -> List[schemas.ProcessingLocation]:
        documents = await self.store.list(PROCESSING_LOCATIONS)
        return [schemas.ProcessingLocation.model_validate(document) for document in documents]

    async def _resolve_location(self, location_id: Optional[str]) -> Optional[schemas.ProcessingLocation]:
        if not location_id:
            return None
        try:
            locations = await self.list_processing_locations()
        except Exception as e:
            logger.warning(f"Could not fetch processing locations, updating without location: {e}")
            return None
        location = next((loc for loc in locations if loc.id == str(location_id)), None)
        if location is None:
            logger.warning(f"Processing location '{location_id}' not found")
        return location

    async def advance_status(
        self,
        order_id: str,
        new_status: str,
        location_id: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> schemas.Order:
        """
        Move an order forward along the status table and append a tracking entry.

        Cancelling (only reachable from pending) also returns the stock and
        archives the order, with the notes as the cancellation reason.

        Args:
            order_id: Order to update
            new_status: Requested status
            location_id: Optional processing location to attribute the step to
            notes: Processing notes; existing notes are kept when omitted
            actor: Name recorded as ``updatedBy``

        Returns:
            The saved order

        Raises:
            NotFound: If the order does not exist
            InvalidTransition: If the table does not allow the change; nothing is written
        """
        new_status = getattr(new_status, "value", new_status)
        order = await self.get_order(order_id)
        is_valid, error_msg = validators.validate_order_status_transition(order.order_status, new_status)
        if not is_valid:
            logger.warning(f"Order {order.order_number}: {error_msg}")
            raise InvalidTransition(
                order.order_status, new_status, validators.allowed_transitions(order.order_status)
            )

        location = await self._resolve_location(location_id)
        actor = actor or SYSTEM_ACTOR
        now = schemas.utcnow()

        order.tracking_history.append(
            schemas.OrderTracking(
                status=new_status,
                location=f"{location.name}, {location.city}" if location else None,
                description=status_description(new_status, location),
                timestamp=now,
                updated_by=actor,
            )
        )
        order.order_status = new_status
        order.current_location = location
        order.processing_notes = notes or order.processing_notes
        order.last_updated = now
        order.updated_by = actor

        if new_status == schemas.OrderStatus.CANCELLED.value:
            # A cancelled order always has its stock returned and is archived
            await self._restock_items(order)
            saved = await self._archive(order, "admin", notes or "")
        else:
            saved = await self._save(order)
        logger.info(f"Order {saved.order_number} status updated to {new_status} by {actor}")
        return saved

    async def add_processing_notes(self, order_id: str, notes: str, actor: Optional[str] = None) -> schemas.Order:
        order = await self.get_order(order_id)
        order.processing_notes = notes
        order.last_updated = schemas.utcnow()
        order.updated_by = actor or SYSTEM_ACTOR
        saved = await self._save(order)
        logger.info(f"Processing notes added to order {saved.order_number}")
        return saved

    async def _restock_items(self, order: schemas.Order) -> List[str]:
        """Return each line's stock; returns the product ids that failed."""
        failures = []
        for item in order.items:
            try:
                await self.inventory.restock(item.product_id, item.quantity)
            except Exception as e:
                logger.warning(f"Order {order.order_number}: failed to restock product '{item.product_id}': {e}")
                failures.append(item.product_id)
        return failures

    async def _archive(self, order: schemas.Order, archived_by: str, reason: str) -> schemas.Order:
        now = schemas.utcnow()
        order.order_status = schemas.OrderStatus.CANCELLED.value
        order.is_archived = True
        order.archived_at = now
        order.archived_by = archived_by
        order.archived_reason = reason
        order.cancelled_at = now
        order.cancelled_by = archived_by
        order.cancellation_reason = reason
        order.auto_delete_date = now + timedelta(days=config.ARCHIVE_RETENTION_DAYS)
        saved = await self._save(order)
        logger.info(f"Order {saved.order_number} cancelled and archived by {archived_by}")
        return saved

    @staticmethod
    def _outcome(result, notification_steps) -> schemas.CancellationOutcome:
        return schemas.CancellationOutcome(
            order=result.results.get("archive"),
            restock_failures=result.results.get("restock") or [],
            notifications_sent=sum(1 for step in notification_steps if step in result.completed),
            warnings=[f"{step}: {error}" for step, error in result.failures.items()],
        )

    async def remove_order(
        self,
        order_id: str,
        reason: str = "",
        send_notification: bool = True,
    ) -> schemas.CancellationOutcome:
        """
        Back-office removal of an order.

        Delivered orders are deleted outright. Any other order is cancelled:
        the customer is notified first (unless suppressed), its stock is
        returned and it is archived for automatic deletion. Notification and
        restock failures are logged and reported in the outcome; only the
        archival write aborts the removal.

        Raises:
            NotFound: If the order does not exist
        """
        order = await self.get_order(order_id)

        if order.order_status == schemas.OrderStatus.DELIVERED.value:
            await self.store.delete(ORDERS, order.id)
            logger.info(f"Delivered order {order.order_number} deleted by admin")
            return schemas.CancellationOutcome(deleted=True)

        async def notify(_):
            return await self.notifications.send(removal_notice(order, reason))

        async def restock(_):
            # Already-cancelled orders had their stock returned when cancelled
            if order.order_status == schemas.OrderStatus.CANCELLED.value:
                return []
            return await self._restock_items(order)

        async def archive(_):
            return await self._archive(order, "admin", reason)

        workflow = Workflow(f"remove order {order.order_number}")
        if send_notification:
            workflow.best_effort("notify_customer", notify)
        workflow.best_effort("restock", restock).add("archive", archive)

        return self._outcome(await workflow.run(), ["notify_customer"])

    async def cancel_order(
        self,
        order_id: str,
        reason: str,
        customer_email: Optional[str] = None,
    ) -> schemas.CancellationOutcome:
        """
        Customer cancellation of their own order.

        Stock is returned, the order is archived, then the customer gets a
        refund notice (not for cash on delivery) and the back office a notice
        of the cancellation.

        Args:
            order_id: Order to cancel
            reason: Cancellation reason given by the customer
            customer_email: When given, the order must belong to this customer

        Raises:
            NotFound: If the order does not exist or is not the customer's
            CancellationNotAllowed: If the order is past the cancellable statuses
        """
        order = await self.get_order(order_id)
        if customer_email is not None and order.customer_info.email.lower() != customer_email.lower():
            raise NotFound("order", order_id)
        if not validators.can_cancel_order(order):
            raise CancellationNotAllowed(order.order_status, validators.CUSTOMER_CANCELLABLE)

        is_cod = isinstance(order.payment_method, schemas.CodPayment)

        async def restock(_):
            return await self._restock_items(order)

        async def archive(_):
            return await self._archive(order, "customer", reason)

        async def notify_refund(_):
            return await self.notifications.send(refund_notice(order, reason))

        async def notify_admin(_):
            return await self.notifications.send(customer_cancellation_notice(order, reason))

        workflow = Workflow(f"cancel order {order.order_number}")
        workflow.best_effort("restock", restock).add("archive", archive)
        if not is_cod:
            workflow.best_effort("notify_refund", notify_refund)
        workflow.best_effort("notify_admin", notify_admin)

        return self._outcome(await workflow.run(), ["notify_refund", "notify_admin"])

    async def _all_orders(self) -> List[schemas.Order]:
        documents = await self.store.list(ORDERS)
        return [schemas.Order.model_validate(document) for document in documents]

    async def list_admin_orders(
        self,
        status: Optional[str] = None,
        payment_status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        customer: Optional[str] = None,
    ) -> List[schemas.Order]:
        """
        Orders visible to the back office, filtered and sorted.

        Args:
            status: Only orders in this status
            payment_status: Only orders with this payment status
            date_from: Orders placed on or after this day
            date_to: Orders placed on or before this day (inclusive)
            customer: Case-insensitive match on customer name, email or order number
        """
        orders = [o for o in await self._all_orders() if o.visible_to_admin]

        if status:
            orders = [o for o in orders if o.order_status == status]
        if payment_status:
            orders = [o for o in orders if o.payment_status == payment_status]
        if date_from:
            orders = [o for o in orders if schemas.as_utc(o.order_date).date() >= date_from]
        if date_to:
            orders = [o for o in orders if schemas.as_utc(o.order_date).date() <= date_to]
        if customer:
            term = customer.lower()
            orders = [
                o for o in orders
                if term in o.customer_info.full_name.lower()
                or term in o.customer_info.email.lower()
                or term in o.order_number.lower()
            ]

        return sort_orders(orders)

    async def list_customer_orders(self, email: str) -> List[schemas.Order]:
        """The customer's own orders that they have not hidden."""
        email = email.lower()
        orders = [
            o for o in await self._all_orders()
            if o.visible_to_customer and o.customer_info.email.lower() == email
        ]
        return sort_orders(orders)

    async def statistics(self) -> schemas.OrderStatistics:
        orders = await self._all_orders()
        stats = schemas.OrderStatistics(total=len(orders))
        for order in orders:
            if order.order_status in schemas.OrderStatistics.model_fields:
                setattr(stats, order.order_status, getattr(stats, order.order_status) + 1)
        return stats

    async def set_visibility(self, order_id: str, audience: str, visible: bool) -> schemas.Order:
        """
        Show or hide an order for the 'admin' or 'customer' view.

        Raises:
            ValueError: If ``audience`` is not 'admin' or 'customer'
            NotFound: If the order does not exist
        """
        fields = {"admin": "visibleToAdmin", "customer": "visibleToCustomer"}
        if audience not in fields:
            raise ValueError(f"Unknown audience: {audience}")
        order = await self.get_order(order_id)
        updated = await self.store.patch(ORDERS, order.id, {fields[audience]: visible})
        logger.info(f"Order {order.order_number} {'shown to' if visible else 'hidden from'} {audience}")
        return schemas.Order.model_validate(updated)
