"""Pytest fixtures for the storefront and docstore tests."""

import asyncio
import itertools
import os
from datetime import datetime, timezone
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CLEANUP_ENABLED", "false")

import httpx
import pytest
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from docstore import main as docstore_main
from docstore.database import Base, get_db
from storefront import config, schemas
from storefront.cart import CartService
from storefront.checkout import CheckoutService
from storefront.clients.document_store import DocumentStoreClient
from storefront.inventory import NaiveInventoryStore
from storefront.notifications import NotificationSink
from storefront.orders import OrderLifecycleService


def run(coroutine):
    """Drive one coroutine to completion."""
    return asyncio.run(coroutine)


@pytest.fixture
def docstore_app():
    """Docstore app backed by a fresh in-memory database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    docstore_main.app.dependency_overrides[get_db] = override_get_db
    yield docstore_main.app
    docstore_main.app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def store(docstore_app):
    """Storefront client talking to the in-process docstore."""
    return DocumentStoreClient(
        base_url="http://docstore",
        transport=httpx.ASGITransport(app=docstore_app),
    )


class FailingNotificationSink(NotificationSink):
    """Sink whose every send fails, as when the notification backend is down."""

    def __init__(self, store):
        super().__init__(store)
        self.attempts = 0

    async def send(self, notification):
        self.attempts += 1
        raise httpx.ConnectError("notification backend unavailable")


@pytest.fixture
def inventory(store):
    return NaiveInventoryStore(store)


@pytest.fixture
def notifications(store):
    return NotificationSink(store)


@pytest.fixture
def failing_notifications(store):
    return FailingNotificationSink(store)


@pytest.fixture
def cart(store, inventory):
    return CartService(store, inventory, owner_id="user-1", restock_on_clear=False)


@pytest.fixture
def checkout(store, cart, notifications):
    return CheckoutService(store, cart, notifications, payment_delay=0)


@pytest.fixture
def orders(store, inventory, notifications):
    return OrderLifecycleService(store, inventory, notifications)


def seed_product(store, product_id=1, price=25.0, stock=10, title="Desk Lamp"):
    """Create a product document and return it."""
    return run(store.create("products", {
        "id": product_id,
        "title": title,
        "price": price,
        "stock": stock,
        "availabilityStatus": "In Stock",
        "category": "home",
    }))


def product_stock(store, product_id=1) -> int:
    return run(store.get("products", str(product_id)))["stock"]


@pytest.fixture
def address():
    return schemas.ShippingAddress(
        full_name="Priya Sharma",
        email="priya@example.com",
        phone="555-0100",
        address_line1="12 Park Street",
        city="Pune",
        state="MH",
        postal_code="411001",
        country="India",
    )


@pytest.fixture
def card_payment():
    return schemas.CardPayment(
        cardholder_name="Priya Sharma",
        card_number="4111 1111 1111 1234",
        expiry_month="12",
        expiry_year="2030",
        cvv="123",
    )


_order_numbers = itertools.count()


def make_order(
    order_status="confirmed",
    items=(("1", 3, 25.0),),
    payment_method=None,
    email="priya@example.com",
    order_date=None,
    **overrides,
) -> schemas.Order:
    """Build an order snapshot with line items given as (product id, quantity, unit price)."""
    line_items = [
        schemas.OrderLineItem(
            product_id=product_id,
            quantity=quantity,
            unit_price=Decimal(str(price)),
            total_price=schemas.money(Decimal(str(price)) * quantity),
        )
        for product_id, quantity, price in items
    ]
    subtotal = schemas.money(sum(item.total_price for item in line_items))
    fields = dict(
        order_number=f"ORD-{1700000000000 + next(_order_numbers)}-7",
        customer_info=schemas.CustomerInfo(full_name="Priya Sharma", email=email, phone="555-0100"),
        shipping_address=schemas.ShippingAddress(
            full_name="Priya Sharma",
            email=email,
            address_line1="12 Park Street",
            city="Pune",
            state="MH",
            postal_code="411001",
            country="India",
        ),
        items=line_items,
        subtotal=subtotal,
        tax=schemas.money(subtotal * Decimal("0.08")),
        total=schemas.money(subtotal * Decimal("1.08")),
        payment_method=payment_method or schemas.UpiPayment(upi_id="priya@gpay"),
        order_status=order_status,
        order_date=order_date or datetime.now(timezone.utc),
    )
    fields.update(overrides)
    return schemas.Order(**fields)


def seed_order(store, order: schemas.Order) -> schemas.Order:
    created = run(store.create("orders", order.to_document()))
    return schemas.Order.model_validate(created)


def make_token(user_id="user-1", email="priya@example.com", role="user", name=None):
    claims = {"sub": user_id, "email": email, "role": role}
    if name:
        claims["name"] = name
    return jwt.encode(claims, config.SECRET_KEY, algorithm=config.ALGORITHM)
