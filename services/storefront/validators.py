"""
Business rule validation for the storefront.

Provides validation beyond schema validation: order status transitions,
customer cancellation eligibility, payment details and order totals.
"""
from decimal import Decimal
from typing import Dict, List, Tuple

from . import schemas

# Forward transitions accepted by the order lifecycle service
VALID_TRANSITIONS: Dict[str, List[str]] = {
    "pending": ["confirmed", "cancelled"],
    "confirmed": ["processing"],
    "processing": ["shipped"],
    "shipped": ["delivered"],
    "delivered": [],  # Terminal state
    "cancelled": [],  # Terminal state
}

# Statuses in which the customer may still cancel
CUSTOMER_CANCELLABLE = ["confirmed", "processing"]

UPI_PROVIDERS = ("@gpay", "@phonepe", "@paytm")


def allowed_transitions(status: str) -> List[str]:
    """Statuses reachable from ``status`` (empty for terminal or unknown statuses)."""
    return list(VALID_TRANSITIONS.get(status, []))


def validate_order_status_transition(old_status: str, new_status: str) -> Tuple[bool, str]:
    """
    Validate that a status transition is allowed.

    Args:
        old_status: Current order status
        new_status: Requested order status

    Returns:
        Tuple of (is_valid, error_message)
    """
    if old_status not in VALID_TRANSITIONS:
        return False, f"Unknown status: {old_status}"

    if new_status not in VALID_TRANSITIONS:
        return False, f"Unknown status: {new_status}"

    if new_status not in VALID_TRANSITIONS[old_status]:
        return False, f"Invalid status transition: {old_status} -> {new_status}"

    return True, ""


def can_cancel_order(order: schemas.Order) -> bool:
    """Whether the customer cancellation path is still open for ``order``."""
    return order.order_status in CUSTOMER_CANCELLABLE


def is_valid_upi(upi_id: str) -> bool:
    return bool(upi_id) and upi_id.lower().endswith(UPI_PROVIDERS)


def validate_payment_method(payment: schemas.PaymentMethod) -> Tuple[bool, str]:
    """
    Validate the fields a payment method needs.

    Cards need every card field, UPI ids must belong to a supported provider and
    cash on delivery needs nothing.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if isinstance(payment, schemas.CardPayment):
        fields = [payment.cardholder_name, payment.card_number, payment.expiry_month,
                  payment.expiry_year, payment.cvv]
        if not all(value and value.strip() for value in fields):
            return False, "Please fill in all card details"
    elif isinstance(payment, schemas.UpiPayment):
        if not payment.upi_id:
            return False, "Please enter your UPI ID"
        if not is_valid_upi(payment.upi_id):
            return False, "UPI ID must end with @gpay, @phonepe, or @paytm"
    return True, ""


def validate_order_total(items: List[schemas.OrderLineItem], claimed_subtotal: Decimal) -> Tuple[bool, str]:
    """
    Validate that the subtotal matches the sum of the line totals.

    Args:
        items: Order line items
        claimed_subtotal: The subtotal recorded on the order

    Returns:
        Tuple of (is_valid, error_message)
    """
    calculated = schemas.money(sum((Decimal(str(item.total_price)) for item in items), Decimal("0")))

    # Allow small rounding differences (up to 0.01)
    if abs(calculated - claimed_subtotal) > Decimal("0.01"):
        return False, f"Order total mismatch: calculated ${calculated}, claimed ${claimed_subtotal}"

    return True, ""
