"""
Error types raised by the storefront services.

Validation errors (stock, transitions) are raised before any side effect.
Transport failures talking to the document store surface as ``httpx.HTTPError``.
"""
from typing import Iterable, Optional


class StorefrontError(Exception):
    """Base class for storefront errors."""


class NotFound(StorefrontError):
    def __init__(self, kind: str, identifier):
        super().__init__(f"{kind.capitalize()} '{identifier}' not found")
        self.kind = kind
        self.identifier = identifier


class InsufficientStock(StorefrontError):
    def __init__(self, product_id, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product '{product_id}'. Available: {available}, Requested: {requested}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidTransition(StorefrontError):
    def __init__(self, current: str, requested: str, allowed: Iterable[str], message: Optional[str] = None):
        self.current = current
        self.requested = requested
        self.allowed = list(allowed)
        super().__init__(
            message
            or f"Invalid status transition: {current} -> {requested}. "
               f"Allowed transitions: {', '.join(self.allowed) or 'none'}"
        )


class CancellationNotAllowed(InvalidTransition):
    """The customer cancellation path is closed for the order's current status."""

    def __init__(self, current: str, cancellable: Iterable[str]):
        cancellable = list(cancellable)
        super().__init__(
            current,
            "cancelled",
            [],
            message=f"Orders can only be cancelled while {' or '.join(cancellable)}; this order is {current}",
        )
        self.cancellable = cancellable


class EmptyCart(StorefrontError):
    def __init__(self):
        super().__init__("Your cart is empty. Please add some items before checkout.")


class InvalidPaymentDetails(StorefrontError):
    """Payment method fields are missing or malformed."""


class CheckoutInProgress(StorefrontError):
    def __init__(self, owner_id: str):
        super().__init__("A checkout is already being processed for this cart")
        self.owner_id = owner_id


class PaymentFailed(StorefrontError):
    """Checkout failed after the stock pre-flight; no order was confirmed."""


class PersistenceVerificationFailed(PaymentFailed):
    def __init__(self, order_number: str):
        super().__init__(f"Order {order_number} could not be read back after saving")
        self.order_number = order_number


class ConcurrentModification(StorefrontError):
    """A conditional write lost against a concurrent update."""

    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} was modified concurrently")
        self.collection = collection
        self.doc_id = doc_id
