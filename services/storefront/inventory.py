"""
Inventory ledger: per-product stock kept on the product documents.

Stock is never written negative. ``adjust_stock`` silently skips an adjustment
that would go below zero; ``reserve`` refuses it with InsufficientStock.

Two implementations share one interface:
- NaiveInventoryStore reads then writes with no isolation. Two concurrent
  reservations can both read the same stock and both succeed; the later write
  wins. Treat stock numbers as eventually consistent with this store.
- VersionedInventoryStore writes with If-Match on the document version and
  retries on conflict, so concurrent adjustments serialize at the store.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from . import config, schemas
from .clients.document_store import DocumentStoreClient
from .errors import ConcurrentModification, InsufficientStock, NotFound

logger = logging.getLogger(__name__)

PRODUCTS = "products"


def availability_status(stock: int) -> str:
    """Derived availability label for a stock level."""
    if stock <= 0:
        return "Out of Stock"
    if stock <= config.LOW_STOCK_THRESHOLD:
        return "Low Stock"
    return "In Stock"


def _stock_fields(stock: int) -> dict:
    return {"stock": stock, "availabilityStatus": availability_status(stock)}


class InventoryStore(ABC):
    """Stock operations against the products collection."""

    def __init__(self, store: DocumentStoreClient):
        self.store = store

    async def get_product(self, product_id: str) -> schemas.Product:
        """
        Load a product.

        Raises:
            NotFound: If the product does not exist
        """
        document = await self.store.get(PRODUCTS, product_id)
        if document is None:
            raise NotFound("product", product_id)
        return schemas.Product.model_validate(document)

    @abstractmethod
    async def _apply(self, product_id: str, delta: int) -> Tuple[schemas.Product, bool]:
        """
        Apply ``delta`` to the product's stock unless it would go negative.

        Returns:
            Tuple of (product after the operation, whether stock was written)
        """

    async def adjust_stock(self, product_id: str, delta: int) -> schemas.Product:
        """
        Add ``delta`` (negative to take stock) to a product's stock.

        An adjustment that would drive stock below zero is a no-op and the
        unmodified product is returned.
        """
        product, _ = await self._apply(product_id, delta)
        return product

    async def reserve(self, product_id: str, quantity: int) -> schemas.Product:
        """
        Take ``quantity`` units of stock, all or nothing.

        Raises:
            InsufficientStock: If fewer than ``quantity`` units are available;
                stock is left unchanged
        """
        product, applied = await self._apply(product_id, -quantity)
        if not applied:
            raise InsufficientStock(product_id, quantity, product.stock)
        logger.info(f"Reserved {quantity} units of product '{product_id}', {product.stock} left")
        return product

    async def restock(self, product_id: str, quantity: int) -> schemas.Product:
        """Return ``quantity`` units to a product's stock."""
        product = await self.adjust_stock(product_id, quantity)
        logger.info(f"Restored {quantity} units of product '{product_id}', stock now {product.stock}")
        return product


class NaiveInventoryStore(InventoryStore):
    """Read-modify-write with no concurrency control."""

    async def _apply(self, product_id: str, delta: int) -> Tuple[schemas.Product, bool]:
        product = await self.get_product(product_id)
        next_stock = product.stock + delta
        if next_stock < 0:
            logger.warning(
                f"Skipping stock adjustment of {delta} for product '{product_id}': only {product.stock} available"
            )
            return product, False

        updated = await self.store.patch(PRODUCTS, product_id, _stock_fields(next_stock))
        return schemas.Product.model_validate(updated), True


class VersionedInventoryStore(InventoryStore):
    """
    Compare-and-swap on the product document version.

    Args:
        store: Document store client
        max_attempts: Conflicting writes tolerated before giving up
    """

    def __init__(self, store: DocumentStoreClient, max_attempts: int = 5):
        super().__init__(store)
        self.max_attempts = max_attempts

    async def _apply(self, product_id: str, delta: int) -> Tuple[schemas.Product, bool]:
        for attempt in range(1, self.max_attempts + 1):
            document, version = await self.store.get_versioned(PRODUCTS, product_id)
            if document is None:
                raise NotFound("product", product_id)
            product = schemas.Product.model_validate(document)

            next_stock = product.stock + delta
            if next_stock < 0:
                logger.warning(
                    f"Skipping stock adjustment of {delta} for product '{product_id}': only {product.stock} available"
                )
                return product, False

            try:
                updated = await self.store.patch(PRODUCTS, product_id, _stock_fields(next_stock), if_match=version)
                return schemas.Product.model_validate(updated), True
            except ConcurrentModification:
                logger.info(f"Stock of product '{product_id}' changed concurrently (attempt {attempt}), retrying")

        raise ConcurrentModification(PRODUCTS, product_id)


def build_inventory(store: DocumentStoreClient, strategy: Optional[str] = None) -> InventoryStore:
    """Inventory store for the configured strategy ('naive' or 'versioned')."""
    strategy = strategy or config.INVENTORY_STRATEGY
    if strategy == "versioned":
        return VersionedInventoryStore(store)
    if strategy != "naive":
        logger.warning(f"Unknown inventory strategy '{strategy}', using 'naive'")
    return NaiveInventoryStore(store)
