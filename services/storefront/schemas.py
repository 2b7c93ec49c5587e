"""
Pydantic schemas for the storefront.

These schemas define the documents kept in the document store (products, cart
items, orders, notifications, processing locations) and the request/response
bodies of the API. Field names are snake_case in Python and camelCase on the
wire; cart items keep the PascalCase keys (ProductID, Quantity, TotalPrice)
used by the store.
"""
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

CENT = Decimal("0.01")


def money(value: Any) -> Decimal:
    """Round an amount to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps read from the store as UTC."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# Store ids may be numbers (seeded products) or strings (generated ids)
Identifier = Annotated[str, BeforeValidator(lambda v: str(v) if isinstance(v, (int, float)) else v)]

# Decimal in Python, JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class StoreModel(BaseModel):
    """Base for documents exchanged with the store and the API."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    def to_document(self) -> dict:
        """Serialize for the document store (camelCase keys, JSON types)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Product(StoreModel):
    """Catalogue product; fields beyond these are kept as-is."""
    model_config = ConfigDict(extra="allow")

    id: Identifier
    title: Optional[str] = None
    price: Money = Decimal("0")
    stock: int = 0
    availability_status: Optional[str] = None


class CartItem(StoreModel):
    """
    One line of a shopper's cart.

    Attributes:
        id: Store-assigned id
        cart_item_id: Client timestamp id kept for compatibility
        product_id: Product in the cart
        quantity: Units reserved (at least 1)
        total_price: Unit price x quantity at last write
        owner_id: Session or user id the line belongs to
        product: Joined product, display only (never persisted)
    """
    id: Optional[Identifier] = None
    cart_item_id: Optional[int] = Field(None, alias="CartItemID")
    product_id: Identifier = Field(..., alias="ProductID")
    quantity: int = Field(..., ge=1, alias="Quantity")
    total_price: Money = Field(..., alias="TotalPrice")
    owner_id: Optional[str] = None
    product: Optional[Product] = Field(None, alias="Product")

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"product"})


class Cart(StoreModel):
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = 0
    total_price: Money = Decimal("0.00")


class CustomerInfo(StoreModel):
    full_name: str
    email: str
    phone: str = ""


class ShippingAddress(StoreModel):
    full_name: str
    email: str
    phone: str = ""
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str


class CardPayment(StoreModel):
    type: Literal["card"] = "card"
    cardholder_name: str
    card_number: str
    expiry_month: str
    expiry_year: str
    # Accepted at checkout, never persisted
    cvv: Optional[str] = Field(None, exclude=True)

    def masked(self) -> "CardPayment":
        digits = "".join(ch for ch in self.card_number if ch.isdigit())
        return self.model_copy(update={"card_number": f"**** **** **** {digits[-4:]}", "cvv": None})


class UpiPayment(StoreModel):
    type: Literal["upi"] = "upi"
    upi_id: str


class CodPayment(StoreModel):
    type: Literal["cod"] = "cod"


PaymentMethod = Annotated[Union[CardPayment, UpiPayment, CodPayment], Field(discriminator="type")]


class OrderLineItem(StoreModel):
    """Frozen copy of a cart line at order time."""
    cart_item_id: Optional[int] = Field(None, alias="CartItemID")
    product_id: Identifier = Field(..., alias="ProductID")
    quantity: int = Field(..., ge=1, alias="Quantity")
    total_price: Money = Field(..., alias="TotalPrice")
    unit_price: Optional[Money] = None
    title: Optional[str] = None


class OrderTracking(StoreModel):
    status: OrderStatus
    location: Optional[str] = None
    description: str
    timestamp: datetime
    updated_by: Optional[str] = None


class ProcessingLocation(StoreModel):
    id: Identifier
    name: str
    address: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    type: Literal["warehouse", "processing_center", "shipping_center"] = "warehouse"


class Order(StoreModel):
    """
    A completed purchase.

    The snapshot fields (items, amounts, customer_info, shipping_address,
    payment_method, order_date) are written once at checkout. Status, tracking,
    cancellation, archival and visibility fields are the mutable overlay owned
    by the order lifecycle service.
    """
    id: Optional[Identifier] = None
    order_number: str
    user_id: Optional[str] = None
    customer_info: CustomerInfo
    shipping_address: ShippingAddress
    items: List[OrderLineItem]
    subtotal: Money
    tax: Money
    shipping: Money = Decimal("0.00")
    total: Money
    payment_method: PaymentMethod
    order_status: OrderStatus = OrderStatus.CONFIRMED
    payment_status: PaymentStatus = PaymentStatus.COMPLETED
    order_date: datetime
    estimated_delivery: Optional[date] = None

    tracking_history: List[OrderTracking] = Field(default_factory=list)
    current_location: Optional[ProcessingLocation] = None
    processing_notes: Optional[str] = None
    last_updated: Optional[datetime] = None
    updated_by: Optional[str] = None

    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[Literal["customer", "admin"]] = None

    visible_to_admin: bool = True
    visible_to_customer: bool = True

    is_archived: bool = False
    archived_at: Optional[datetime] = None
    archived_reason: Optional[str] = None
    archived_by: Optional[Literal["admin", "customer", "system"]] = None
    auto_delete_date: Optional[datetime] = None


class Notification(StoreModel):
    """A message for a customer (recipient = email) or the back office (recipient = 'admin')."""
    id: Optional[Identifier] = None
    recipient: str
    type: str
    title: str
    message: str
    order_number: Optional[str] = None
    customer_name: Optional[str] = None
    amount: Optional[Money] = None
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    read: bool = False


# Requests

class AddToCartRequest(StoreModel):
    product_id: Identifier
    quantity: int = Field(1, ge=1)


class UpdateQuantityRequest(StoreModel):
    quantity: int


class CheckoutRequest(StoreModel):
    shipping_address: ShippingAddress
    payment_method: PaymentMethod


class AdvanceStatusRequest(StoreModel):
    status: OrderStatus
    location_id: Optional[str] = None
    notes: Optional[str] = None


class ProcessingNotesRequest(StoreModel):
    notes: str


class CancelOrderRequest(StoreModel):
    reason: str = Field(..., min_length=1)


class RemoveOrderRequest(StoreModel):
    reason: str = ""
    send_notification: bool = True


# Responses

class CancellationOutcome(StoreModel):
    """What a cancellation/removal did, including best-effort steps that failed."""
    order: Optional[Order] = None
    deleted: bool = False
    restock_failures: List[str] = Field(default_factory=list)
    notifications_sent: int = 0
    warnings: List[str] = Field(default_factory=list)


class OrderStatistics(StoreModel):
    total: int = 0
    pending: int = 0
    confirmed: int = 0
    processing: int = 0
    shipped: int = 0
    delivered: int = 0
    cancelled: int = 0


class CleanupResult(StoreModel):
    deleted_count: int = 0
    failed: List[str] = Field(default_factory=list)
    skipped: bool = False


class CleanupStats(StoreModel):
    total_archived: int
    expired_count: int
    next_cleanup: datetime
