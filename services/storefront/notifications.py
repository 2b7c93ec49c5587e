"""
Notification sink backed by the ``notifications`` collection.

Customers are addressed by email, the back office by the recipient 'admin'.
Callers treat every send as best effort: a failed send is logged by the
calling workflow and never aborts it.
"""
import logging
from typing import List

from . import schemas
from .clients.document_store import DocumentStoreClient
from .errors import NotFound

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"
ADMIN_RECIPIENT = "admin"


def _format_price(amount) -> str:
    return f"${float(amount):.2f}"


class NotificationSink:
    def __init__(self, store: DocumentStoreClient):
        self.store = store

    async def send(self, notification: schemas.Notification) -> schemas.Notification:
        """
        Store a notification for its recipient.

        Raises:
            httpx.HTTPError: If the store rejects or cannot be reached
        """
        created = await self.store.create(NOTIFICATIONS, notification.to_document())
        logger.info(f"Sent '{notification.type}' notification to {notification.recipient}")
        return schemas.Notification.model_validate(created)

    async def list_for(self, recipient: str, unread_only: bool = False) -> List[schemas.Notification]:
        """Notifications of one recipient, newest first."""
        documents = await self.store.list(NOTIFICATIONS, recipient=recipient)
        notifications = [schemas.Notification.model_validate(document) for document in documents]
        if unread_only:
            notifications = [n for n in notifications if not n.read]
        return sorted(notifications, key=lambda n: schemas.as_utc(n.created_at), reverse=True)

    async def mark_as_read(self, notification_id: str, recipient: str) -> schemas.Notification:
        """
        Mark one of ``recipient``'s notifications as read.

        Raises:
            NotFound: If the notification does not exist or belongs to someone else
        """
        document = await self.store.get(NOTIFICATIONS, notification_id)
        if document is None or document.get("recipient") != recipient:
            raise NotFound("notification", notification_id)
        updated = await self.store.patch(NOTIFICATIONS, notification_id, {"read": True})
        return schemas.Notification.model_validate(updated)


def order_placed_notice(order: schemas.Order) -> schemas.Notification:
    return schemas.Notification(
        recipient=order.customer_info.email,
        type="order_placed",
        title="Payment successful",
        message=(
            f"Dear {order.customer_info.full_name}, your order {order.order_number} has been placed. "
            f"Total charged: {_format_price(order.total)}."
        ),
        order_number=order.order_number,
        customer_name=order.customer_info.full_name,
        amount=order.total,
    )


def removal_notice(order: schemas.Order, reason: str) -> schemas.Notification:
    """Customer notice for an order removed by the back office."""
    return schemas.Notification(
        recipient=order.customer_info.email,
        type="order_removed",
        title="Order Cancelled - Refund Processed",
        message=(
            f"Dear {order.customer_info.full_name}, your order {order.order_number} has been cancelled due to: "
            f"{reason or 'unforeseen circumstances'}. A refund of {_format_price(order.total)} "
            f"will be processed within 3-5 business days."
        ),
        order_number=order.order_number,
        customer_name=order.customer_info.full_name,
        amount=order.total,
        reason=reason,
    )


def refund_notice(order: schemas.Order, reason: str) -> schemas.Notification:
    """Customer notice for an order the customer cancelled."""
    return schemas.Notification(
        recipient=order.customer_info.email,
        type="order_refund_notification",
        title="Order Cancelled - Refund Processing",
        message=(
            f"Dear {order.customer_info.full_name}, your order {order.order_number} has been cancelled as "
            f"requested. Reason: {reason}. A full refund of {_format_price(order.total)} will be processed "
            f"within 7 business days and credited back to your original payment method."
        ),
        order_number=order.order_number,
        customer_name=order.customer_info.full_name,
        amount=order.total,
        reason=reason,
    )


def customer_cancellation_notice(order: schemas.Order, reason: str) -> schemas.Notification:
    """Back-office notice that a customer cancelled their order."""
    return schemas.Notification(
        recipient=ADMIN_RECIPIENT,
        type="order_deleted_by_customer",
        title="Order Cancelled by Customer",
        message=(
            f"Customer {order.customer_info.full_name} has cancelled order {order.order_number}. "
            f"Reason: {reason}"
        ),
        order_number=order.order_number,
        customer_name=order.customer_info.full_name,
        amount=order.total,
        reason=reason,
    )
