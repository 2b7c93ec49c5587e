"""
Storefront Service API

This module implements the FastAPI application for the storefront's order
lifecycle: the shopper's cart, checkout, order history and cancellation, and
the back-office order management views. All state lives in the document store;
this service enforces the business rules (stock reservation, status
transitions, archival) on top of it.

Endpoints:
    GET /healthz: Health check endpoint for orchestration systems
    GET|DELETE /cart, POST /cart/items, PUT|DELETE /cart/items/{id}: Cart
    POST /checkout: Place an order for the cart
    GET /orders, GET /orders/{order_number}/tracking: Customer order history
    POST /orders/{id}/cancel, POST /orders/{id}/hide: Customer order actions
    /admin/...: Back-office order management and cleanup (admin role)
    GET /notifications, POST /notifications/{id}/read: Notification inbox

The Auto-Cleanup Scheduler is started with the application (unless disabled
with AUTO_CLEANUP_ENABLED) and stopped on shutdown.
"""
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

import httpx
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse

from . import auth, config, errors, schemas
from .cart import CartService
from .checkout import CheckoutService
from .cleanup import AutoCleanupService, CleanupScheduler
from .clients.document_store import DocumentStoreClient
from .inventory import InventoryStore, build_inventory
from .notifications import ADMIN_RECIPIENT, NotificationSink
from .orders import OrderLifecycleService

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Background scheduler, present while the app is running
scheduler: Optional[CleanupScheduler] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    if config.AUTO_CLEANUP_ENABLED:
        scheduler = CleanupScheduler(AutoCleanupService(DocumentStoreClient()))
        scheduler.start()
    yield
    if scheduler is not None:
        await scheduler.stop()
        scheduler = None


app = FastAPI(title="storefront-service", lifespan=lifespan)


# Error mapping

GENERIC_PAYMENT_ERROR = "Payment failed. Please try again."


@app.exception_handler(errors.NotFound)
async def not_found_handler(request: Request, exc: errors.NotFound):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(errors.InsufficientStock)
async def insufficient_stock_handler(request: Request, exc: errors.InsufficientStock):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": str(exc),
            "productId": exc.product_id,
            "requested": exc.requested,
            "available": exc.available,
        },
    )


@app.exception_handler(errors.InvalidTransition)
async def invalid_transition_handler(request: Request, exc: errors.InvalidTransition):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "current": exc.current, "requested": exc.requested, "allowed": exc.allowed},
    )


@app.exception_handler(errors.CheckoutInProgress)
@app.exception_handler(errors.ConcurrentModification)
async def conflict_handler(request: Request, exc: errors.StorefrontError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(errors.EmptyCart)
@app.exception_handler(errors.InvalidPaymentDetails)
async def bad_request_handler(request: Request, exc: errors.StorefrontError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(errors.PaymentFailed)
async def payment_failed_handler(request: Request, exc: errors.PaymentFailed):
    logger.error(f"Checkout failed: {exc}")
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": GENERIC_PAYMENT_ERROR})


@app.exception_handler(httpx.HTTPError)
async def store_error_handler(request: Request, exc: httpx.HTTPError):
    logger.error(f"Document store error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": "Service communication error"}
    )


# Dependencies

def get_store(current_user: auth.CurrentUser = Depends(auth.get_current_user)) -> DocumentStoreClient:
    """Document store client forwarding the caller's token."""
    return DocumentStoreClient(token=current_user.token)


def get_inventory(store: DocumentStoreClient = Depends(get_store)) -> InventoryStore:
    return build_inventory(store)


def get_notifications(store: DocumentStoreClient = Depends(get_store)) -> NotificationSink:
    return NotificationSink(store)


def get_cart_service(
    store: DocumentStoreClient = Depends(get_store),
    inventory: InventoryStore = Depends(get_inventory),
    current_user: auth.CurrentUser = Depends(auth.get_current_user),
) -> CartService:
    return CartService(store, inventory, owner_id=current_user.id)


def get_checkout_service(
    store: DocumentStoreClient = Depends(get_store),
    cart: CartService = Depends(get_cart_service),
    notifications: NotificationSink = Depends(get_notifications),
) -> CheckoutService:
    return CheckoutService(store, cart, notifications)


def get_order_service(
    store: DocumentStoreClient = Depends(get_store),
    inventory: InventoryStore = Depends(get_inventory),
    notifications: NotificationSink = Depends(get_notifications),
) -> OrderLifecycleService:
    return OrderLifecycleService(store, inventory, notifications)


def get_scheduler(store: DocumentStoreClient = Depends(get_store)) -> CleanupScheduler:
    """The running scheduler, so manual runs share its guard; a one-off one otherwise."""
    if scheduler is not None:
        return scheduler
    return CleanupScheduler(AutoCleanupService(store))


def _actor(user: auth.CurrentUser) -> str:
    return user.name or user.email


async def _customer_order(
    orders: OrderLifecycleService, order_id: str, user: auth.CurrentUser
) -> schemas.Order:
    order = await orders.get_order(order_id)
    if not user.is_admin and order.customer_info.email.lower() != user.email.lower():
        raise errors.NotFound("order", order_id)
    return order


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the storefront service.

    Returns:
        dict: A dictionary with status "healthy"
    """
    return {"status": "healthy"}


# Cart

@app.get("/cart", response_model=schemas.Cart)
async def get_cart(cart: CartService = Depends(get_cart_service)):
    """Retrieve the current user's cart with products joined and totals computed."""
    return await cart.load_cart()


@app.post("/cart/items", response_model=schemas.Cart, status_code=status.HTTP_201_CREATED)
async def add_cart_item(payload: schemas.AddToCartRequest, cart: CartService = Depends(get_cart_service)):
    """
    Add a product to the cart, reserving its stock.

    Args:
        payload: Product and quantity to add

    Returns:
        Cart: The updated cart

    Raises:
        HTTPException: 404 if the product does not exist, 409 if stock is insufficient
    """
    return await cart.add_to_cart(payload.product_id, payload.quantity)


@app.put("/cart/items/{item_id}", response_model=schemas.Cart)
async def update_cart_item(
    item_id: str, payload: schemas.UpdateQuantityRequest, cart: CartService = Depends(get_cart_service)
):
    """Set a cart line's quantity; zero or less removes the line."""
    return await cart.update_quantity(item_id, payload.quantity)


@app.delete("/cart/items/{item_id}", response_model=schemas.Cart)
async def delete_cart_item(item_id: str, cart: CartService = Depends(get_cart_service)):
    return await cart.remove_from_cart(item_id)


@app.delete("/cart", response_model=schemas.Cart)
async def clear_cart(cart: CartService = Depends(get_cart_service)):
    return await cart.clear_cart()


# Checkout

@app.post("/checkout", response_model=schemas.Order, status_code=status.HTTP_201_CREATED)
async def checkout(payload: schemas.CheckoutRequest, service: CheckoutService = Depends(get_checkout_service)):
    """
    Place an order for the current cart.

    Args:
        payload: Shipping address and payment method

    Returns:
        Order: The confirmed order as stored

    Raises:
        HTTPException: 400 if the cart is empty or payment details are incomplete,
            409 if stock is insufficient or a checkout is already running,
            502 if payment or order persistence failed
    """
    return await service.place_order(None, payload.shipping_address, payload.payment_method)


# Customer orders

@app.get("/orders", response_model=List[schemas.Order])
async def list_my_orders(
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.get_current_user),
):
    """List the current user's orders, newest first with cancelled orders last."""
    return await orders.list_customer_orders(current_user.email)


@app.get("/orders/{order_number}/tracking", response_model=schemas.Order)
async def track_order(
    order_number: str,
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.get_current_user),
):
    """
    Retrieve an order by order number for the tracking view.

    Customers can only track their own orders.

    Raises:
        HTTPException: 404 if not found or not owned by the caller
    """
    order = await orders.find_by_order_number(order_number)
    if not current_user.is_admin and order.customer_info.email.lower() != current_user.email.lower():
        raise errors.NotFound("order", order_number)
    return order


@app.post("/orders/{order_id}/cancel", response_model=schemas.CancellationOutcome)
async def cancel_my_order(
    order_id: str,
    payload: schemas.CancelOrderRequest,
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.get_current_user),
):
    """
    Cancel one of the current user's orders while it is confirmed or processing.

    Raises:
        HTTPException: 404 if not found, 409 if the order can no longer be cancelled
    """
    return await orders.cancel_order(order_id, payload.reason, customer_email=current_user.email)


@app.post("/orders/{order_id}/hide", response_model=schemas.Order)
async def hide_my_order(
    order_id: str,
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.get_current_user),
):
    """Remove an order from the current user's history (the back office still sees it)."""
    await _customer_order(orders, order_id, current_user)
    return await orders.set_visibility(order_id, "customer", False)


# Back office

@app.get("/admin/orders", response_model=List[schemas.Order])
async def list_orders(
    order_status: Optional[schemas.OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[schemas.PaymentStatus] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    customer: Optional[str] = None,
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """
    List orders visible to the back office.

    Args:
        order_status: Filter by order status
        payment_status: Filter by payment status
        date_from: Orders placed on or after this day
        date_to: Orders placed on or before this day
        customer: Text matched against customer name, email and order number

    Returns:
        List[Order]: Newest first, cancelled orders last
    """
    return await orders.list_admin_orders(
        status=order_status.value if order_status else None,
        payment_status=payment_status.value if payment_status else None,
        date_from=date_from,
        date_to=date_to,
        customer=customer,
    )


@app.get("/admin/orders/statistics", response_model=schemas.OrderStatistics)
async def order_statistics(
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return await orders.statistics()


@app.post("/admin/orders/{order_id}/status", response_model=schemas.Order)
async def advance_order_status(
    order_id: str,
    payload: schemas.AdvanceStatusRequest,
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """
    Move an order to its next status and record a tracking entry.

    Raises:
        HTTPException: 404 if not found, 409 with the allowed transitions if the
            transition is not permitted
    """
    return await orders.advance_status(
        order_id, payload.status, payload.location_id, payload.notes, actor=_actor(current_user)
    )


@app.put("/admin/orders/{order_id}/notes", response_model=schemas.Order)
async def update_processing_notes(
    order_id: str,
    payload: schemas.ProcessingNotesRequest,
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return await orders.add_processing_notes(order_id, payload.notes, actor=_actor(current_user))


@app.post("/admin/orders/{order_id}/remove", response_model=schemas.CancellationOutcome)
async def remove_order(
    order_id: str,
    payload: schemas.RemoveOrderRequest,
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """
    Remove an order: delivered orders are deleted, others are cancelled and archived.

    Returns:
        CancellationOutcome: The archived order (or ``deleted``) and any best-effort failures
    """
    return await orders.remove_order(order_id, payload.reason, payload.send_notification)


@app.post("/admin/orders/{order_id}/hide", response_model=schemas.Order)
async def hide_order(
    order_id: str,
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return await orders.set_visibility(order_id, "admin", False)


@app.get("/admin/processing-locations", response_model=List[schemas.ProcessingLocation])
async def processing_locations(
    orders: OrderLifecycleService = Depends(get_order_service),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return await orders.list_processing_locations()


@app.get("/admin/cleanup/stats", response_model=schemas.CleanupStats)
async def cleanup_stats(
    cleanup: CleanupScheduler = Depends(get_scheduler),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    return await cleanup.stats()


@app.post("/admin/cleanup", response_model=schemas.CleanupResult)
async def run_cleanup(
    cleanup: CleanupScheduler = Depends(get_scheduler),
    current_user: auth.CurrentUser = Depends(auth.require_admin),
):
    """Run a cleanup sweep now; skipped if one is already running."""
    result = await cleanup.run_once()
    logger.info(f"Manual cleanup completed: {result.deleted_count} orders deleted")
    return result


# Notifications

@app.get("/notifications", response_model=List[schemas.Notification])
async def list_notifications(
    unread_only: bool = False,
    notifications: NotificationSink = Depends(get_notifications),
    current_user: auth.CurrentUser = Depends(auth.get_current_user),
):
    """List the caller's notifications (the 'admin' inbox for admins), newest first."""
    recipient = ADMIN_RECIPIENT if current_user.is_admin else current_user.email
    return await notifications.list_for(recipient, unread_only=unread_only)


@app.post("/notifications/{notification_id}/read", response_model=schemas.Notification)
async def read_notification(
    notification_id: str,
    notifications: NotificationSink = Depends(get_notifications),
    current_user: auth.CurrentUser = Depends(auth.get_current_user),
):
    recipient = ADMIN_RECIPIENT if current_user.is_admin else current_user.email
    return await notifications.mark_as_read(notification_id, recipient)
