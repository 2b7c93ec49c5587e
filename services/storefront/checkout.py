"""
Checkout: turns the cart snapshot into a persisted, verified order.

Stock was already taken when items went into the cart, so checkout never
decrements it again. Steps, in order:

1. stock pre-flight (fatal)
2. build the order snapshot (fatal)
3. simulated payment round trip (fatal)
4. persist the order (fatal)
5. read it back (fatal)
6. clear the cart without restocking (best effort)
7. notify the customer (best effort)

A failure after the pre-flight surfaces as PaymentFailed; no order is
reported as placed unless it was read back from the store.
"""
import asyncio
import logging
import random
import time
from datetime import timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Set

from . import config, schemas, validators
from .cart import CartService
from .clients.document_store import DocumentStoreClient
from .errors import (
    CheckoutInProgress,
    EmptyCart,
    InsufficientStock,
    InvalidPaymentDetails,
    PaymentFailed,
    PersistenceVerificationFailed,
    StorefrontError,
)
from .notifications import NotificationSink, order_placed_notice
from .workflow import Workflow

logger = logging.getLogger(__name__)

ORDERS = "orders"
ORDER_NUMBER_ATTEMPTS = 5

# Owners with a checkout currently running
_checkouts_in_progress: Set[str] = set()


def generate_order_number() -> str:
    """Order number in the form ORD-<epoch millis>-<0..999>."""
    return f"ORD-{int(time.time() * 1000)}-{random.randint(0, 999)}"


class CheckoutService:
    """
    Args:
        store: Document store client
        cart: Cart of the shopper checking out
        notifications: Sink for the order confirmation
        payment_delay: Seconds of simulated payment processing
            (defaults to PAYMENT_DELAY_SECONDS)
        sleep: Coroutine used to wait out the payment delay
    """

    def __init__(
        self,
        store: DocumentStoreClient,
        cart: CartService,
        notifications: NotificationSink,
        payment_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.cart = cart
        self.notifications = notifications
        self.payment_delay = config.PAYMENT_DELAY_SECONDS if payment_delay is None else payment_delay
        self.sleep = sleep

    async def _unique_order_number(self) -> str:
        order_number = generate_order_number()
        for _ in range(ORDER_NUMBER_ATTEMPTS - 1):
            if not await self.store.list(ORDERS, orderNumber=order_number):
                return order_number
            logger.warning(f"Order number {order_number} already used, generating another")
            order_number = generate_order_number()
        return order_number

    async def _check_stock(self, cart: schemas.Cart) -> None:
        """
        Refuse checkout when a line holds more units than the product has left.

        The comparison is against the stock remaining after the cart's own
        reservation, so a line holding more than half of the stock the product
        had before it was added always fails: 10 in stock, 6 in the cart, 4 left.
        """
        for item in cart.items:
            product = await self.cart.inventory.get_product(item.product_id)
            if item.quantity > product.stock:
                logger.warning(
                    f"Checkout blocked: product '{item.product_id}' has {product.stock} in stock, "
                    f"{item.quantity} requested"
                )
                raise InsufficientStock(item.product_id, item.quantity, product.stock)

    async def _build_order(
        self,
        cart: schemas.Cart,
        address: schemas.ShippingAddress,
        payment_method: schemas.PaymentMethod,
    ) -> schemas.Order:
        items = [
            schemas.OrderLineItem(
                cart_item_id=item.cart_item_id,
                product_id=item.product_id,
                quantity=item.quantity,
                total_price=item.total_price,
                unit_price=item.product.price if item.product else None,
                title=item.product.title if item.product else None,
            )
            for item in cart.items
        ]
        subtotal = schemas.money(cart.total_price)
        is_valid, error_msg = validators.validate_order_total(items, subtotal)
        if not is_valid:
            raise StorefrontError(error_msg)

        if isinstance(payment_method, schemas.CardPayment):
            payment_method = payment_method.masked()

        shipping = schemas.money(config.SHIPPING_COST)
        now = schemas.utcnow()
        return schemas.Order(
            order_number=await self._unique_order_number(),
            user_id=self.cart.owner_id,
            customer_info=schemas.CustomerInfo(
                full_name=address.full_name, email=address.email, phone=address.phone
            ),
            shipping_address=address,
            items=items,
            subtotal=subtotal,
            tax=schemas.money(subtotal * config.TAX_RATE),
            shipping=shipping,
            total=schemas.money(subtotal * (Decimal("1") + config.TAX_RATE)) + shipping,
            payment_method=payment_method,
            order_status=schemas.OrderStatus.CONFIRMED,
            payment_status=(
                schemas.PaymentStatus.PENDING
                if isinstance(payment_method, schemas.CodPayment)
                else schemas.PaymentStatus.COMPLETED
            ),
            order_date=now,
            estimated_delivery=(now + timedelta(days=config.ESTIMATED_DELIVERY_DAYS)).date(),
        )

    async def place_order(
        self,
        cart: Optional[schemas.Cart],
        address: schemas.ShippingAddress,
        payment_method: schemas.PaymentMethod,
    ) -> schemas.Order:
        """
        Place an order for the cart.

        Args:
            cart: Cart snapshot to order; the current cart is loaded when None
            address: Shipping address, also the customer contact snapshot
            payment_method: Card, UPI or cash on delivery

        Returns:
            The order as read back from the store

        Raises:
            EmptyCart: If the cart has no items
            InvalidPaymentDetails: If the payment method is incomplete
            CheckoutInProgress: If this owner already has a checkout running
            InsufficientStock: If an item fails the stock pre-flight
            PaymentFailed: If any later step fails; PersistenceVerificationFailed
                when the saved order cannot be read back
        """
        if cart is None:
            cart = await self.cart.load_cart()
        if not cart.items:
            raise EmptyCart()

        is_valid, error_msg = validators.validate_payment_method(payment_method)
        if not is_valid:
            raise InvalidPaymentDetails(error_msg)

        owner_id = self.cart.owner_id
        if owner_id in _checkouts_in_progress:
            raise CheckoutInProgress(owner_id)
        _checkouts_in_progress.add(owner_id)

        try:
            await self._check_stock(cart)
            return await self._complete(cart, address, payment_method)
        finally:
            _checkouts_in_progress.discard(owner_id)

    async def _complete(
        self,
        cart: schemas.Cart,
        address: schemas.ShippingAddress,
        payment_method: schemas.PaymentMethod,
    ) -> schemas.Order:
        async def build(_):
            return await self._build_order(cart, address, payment_method)

        async def pay(results):
            logger.info(f"Processing payment for order {results['build'].order_number}")
            await self.sleep(self.payment_delay)

        async def persist(results):
            return await self.store.create(ORDERS, results["build"].to_document())

        async def verify(results):
            order = results["build"]
            document = await self.store.get(ORDERS, results["persist"]["id"])
            if document is None or document.get("orderNumber") != order.order_number:
                raise PersistenceVerificationFailed(order.order_number)
            return schemas.Order.model_validate(document)

        async def clear_cart(_):
            return await self.cart.clear_cart(restock=False)

        async def notify(results):
            return await self.notifications.send(order_placed_notice(results["verify"]))

        workflow = (
            Workflow("checkout")
            .add("build", build)
            .add("payment", pay)
            .add("persist", persist)
            .add("verify", verify)
            .best_effort("clear_cart", clear_cart)
            .best_effort("notify", notify)
        )
        try:
            outcome = await workflow.run()
        except PaymentFailed:
            raise
        except Exception as e:
            raise PaymentFailed(f"Checkout failed: {e}") from e

        order = outcome.results["verify"]
        logger.info(f"Order {order.order_number} placed for {order.customer_info.email}, total {order.total}")
        return order
