"""Tests for the inventory ledger."""

import pytest

from conftest import product_stock, run, seed_product
from storefront import inventory as inventory_module
from storefront.errors import ConcurrentModification, InsufficientStock, NotFound
from storefront.inventory import (
    NaiveInventoryStore,
    VersionedInventoryStore,
    availability_status,
    build_inventory,
)


class TestAvailabilityStatus:
    @pytest.mark.parametrize("stock,expected", [
        (0, "Out of Stock"),
        (1, "Low Stock"),
        (10, "Low Stock"),
        (11, "In Stock"),
    ])
    def test_thresholds(self, stock, expected):
        assert availability_status(stock) == expected


@pytest.fixture(params=["naive", "versioned"])
def ledger(request, store):
    return build_inventory(store, request.param)


class TestAdjustStock:
    def test_decrement(self, store, ledger):
        seed_product(store, stock=10)
        product = run(ledger.adjust_stock("1", -4))
        assert product.stock == 6
        assert product_stock(store) == 6

    def test_would_go_negative_is_noop(self, store, ledger):
        seed_product(store, stock=2)
        product = run(ledger.adjust_stock("1", -5))
        assert product.stock == 2
        assert product_stock(store) == 2

    def test_status_written_with_stock(self, store, ledger):
        seed_product(store, stock=12)
        run(ledger.adjust_stock("1", -3))
        assert run(store.get("products", "1"))["availabilityStatus"] == "Low Stock"
        run(ledger.adjust_stock("1", -9))
        assert run(store.get("products", "1"))["availabilityStatus"] == "Out of Stock"

    def test_other_product_fields_survive(self, store, ledger):
        seed_product(store, stock=5)
        run(ledger.adjust_stock("1", 1))
        document = run(store.get("products", "1"))
        assert document["title"] == "Desk Lamp"
        assert document["category"] == "home"

    def test_unknown_product(self, store, ledger):
        with pytest.raises(NotFound):
            run(ledger.adjust_stock("404", 1))

    def test_stock_never_negative_over_a_sequence(self, store, ledger):
        seed_product(store, stock=3)
        for delta in [-2, -2, 1, -3, -1, 5, -10]:
            run(ledger.adjust_stock("1", delta))
            assert product_stock(store) >= 0


class TestReserve:
    def test_full_reservation(self, store, ledger):
        seed_product(store, stock=10)
        run(ledger.reserve("1", 10))
        assert product_stock(store) == 0

    def test_insufficient_stock_leaves_stock_unchanged(self, store, ledger):
        seed_product(store, stock=3)
        with pytest.raises(InsufficientStock) as exc_info:
            run(ledger.reserve("1", 4))
        assert exc_info.value.available == 3
        assert exc_info.value.requested == 4
        assert product_stock(store) == 3

    def test_restock(self, store, ledger):
        seed_product(store, stock=0)
        run(ledger.restock("1", 3))
        assert product_stock(store) == 3


class TestVersionedStore:
    def test_retries_after_a_concurrent_write(self, store):
        seed_product(store, stock=10)
        versioned = VersionedInventoryStore(store)
        real_get = store.get_versioned
        calls = []

        async def racing_get(collection, doc_id):
            document, version = await real_get(collection, doc_id)
            if not calls:
                # Another writer takes 2 units between our read and our write
                await store.patch("products", doc_id, {"stock": document["stock"] - 2})
            calls.append(version)
            return document, version

        store.get_versioned = racing_get
        product = run(versioned.reserve("1", 3))

        assert len(calls) == 2
        assert product.stock == 5
        assert product_stock(store) == 5

    def test_gives_up_after_max_attempts(self, store):
        seed_product(store, stock=10)
        versioned = VersionedInventoryStore(store, max_attempts=2)

        async def always_conflicts(collection, doc_id, fields, if_match=None):
            raise ConcurrentModification(collection, doc_id)

        store.patch = always_conflicts
        with pytest.raises(ConcurrentModification):
            run(versioned.adjust_stock("1", -1))


class TestBuildInventory:
    def test_strategies(self, store):
        assert isinstance(build_inventory(store, "naive"), NaiveInventoryStore)
        assert isinstance(build_inventory(store, "versioned"), VersionedInventoryStore)

    def test_unknown_strategy_falls_back_to_naive(self, store):
        assert isinstance(build_inventory(store, "magic"), NaiveInventoryStore)

    def test_configured_default(self, store, monkeypatch):
        monkeypatch.setattr(inventory_module.config, "INVENTORY_STRATEGY", "versioned")
        assert isinstance(build_inventory(store), VersionedInventoryStore)
