"""
Cart aggregate: a shopper's line items, scoped by owner id.

Every mutation goes through the inventory ledger first. Adding or growing a
line reserves stock, shrinking or removing it puts stock back. After each
mutation the cart is reloaded and the snapshot is pushed to subscribers.
"""
import logging
import time
from decimal import Decimal
from typing import Callable, List, Optional

from . import config, schemas
from .clients.document_store import DocumentStoreClient
from .errors import NotFound
from .inventory import InventoryStore
from .workflow import Workflow

logger = logging.getLogger(__name__)

CART = "cart"

CartObserver = Callable[[schemas.Cart], None]


def calculate_cart_totals(items: List[schemas.CartItem]) -> schemas.Cart:
    total_items = sum(item.quantity for item in items)
    total_price = sum((Decimal(str(item.total_price)) for item in items), Decimal("0"))
    return schemas.Cart(items=items, total_items=total_items, total_price=schemas.money(total_price))


class CartService:
    """
    Cart operations for one owner (session or user id).

    Args:
        store: Document store client
        inventory: Inventory ledger used for reservations and restocks
        owner_id: Owner every cart line is scoped to
        restock_on_clear: Whether clear_cart returns stock by default
    """

    def __init__(
        self,
        store: DocumentStoreClient,
        inventory: InventoryStore,
        owner_id: str,
        restock_on_clear: Optional[bool] = None,
    ):
        self.store = store
        self.inventory = inventory
        self.owner_id = owner_id
        self.restock_on_clear = config.RESTOCK_ON_CLEAR if restock_on_clear is None else restock_on_clear
        self._observers: List[CartObserver] = []

    def subscribe(self, observer: CartObserver) -> None:
        """Register a callback receiving the cart snapshot after every mutation."""
        self._observers.append(observer)

    def _emit(self, cart: schemas.Cart) -> None:
        for observer in self._observers:
            try:
                observer(cart)
            except Exception as e:
                logger.warning(f"Cart observer failed: {e}")

    async def _items(self) -> List[schemas.CartItem]:
        documents = await self.store.list(CART, ownerId=self.owner_id)
        return [schemas.CartItem.model_validate(document) for document in documents]

    async def _get_item(self, cart_item_id: str) -> schemas.CartItem:
        document = await self.store.get(CART, cart_item_id)
        if document is None:
            raise NotFound("cart item", cart_item_id)
        item = schemas.CartItem.model_validate(document)
        if item.owner_id != self.owner_id:
            raise NotFound("cart item", cart_item_id)
        return item

    async def load_cart(self) -> schemas.Cart:
        """
        Load the owner's cart with each line joined to its product.

        Lines whose product no longer exists are kept without the join.
        """
        items = await self._items()
        for item in items:
            try:
                item.product = await self.inventory.get_product(item.product_id)
            except NotFound:
                logger.warning(f"Cart item {item.id} refers to missing product '{item.product_id}'")
        return calculate_cart_totals(items)

    async def _refresh(self) -> schemas.Cart:
        cart = await self.load_cart()
        self._emit(cart)
        return cart

    async def add_to_cart(self, product_id: str, quantity: int = 1) -> schemas.Cart:
        """
        Reserve stock and add it to the cart, merging into an existing line.

        Raises:
            InsufficientStock: If the product has fewer than ``quantity`` units;
                neither stock nor cart is changed
            NotFound: If the product does not exist
        """
        product_id = str(product_id)
        product = await self.inventory.reserve(product_id, quantity)

        existing = next((item for item in await self._items() if item.product_id == product_id), None)
        try:
            if existing:
                new_quantity = existing.quantity + quantity
                existing.quantity = new_quantity
                existing.total_price = schemas.money(product.price * new_quantity)
                await self.store.replace(CART, existing.id, existing.to_document())
                logger.info(f"Cart {self.owner_id}: product '{product_id}' quantity now {new_quantity}")
            else:
                item = schemas.CartItem(
                    cart_item_id=int(time.time() * 1000),
                    product_id=product_id,
                    quantity=quantity,
                    total_price=schemas.money(product.price * quantity),
                    owner_id=self.owner_id,
                )
                await self.store.create(CART, item.to_document())
                logger.info(f"Cart {self.owner_id}: added {quantity} x product '{product_id}'")
        except Exception as e:
            # Stock stays reserved; there is no compensating restock
            logger.error(f"Cart {self.owner_id}: write failed after reserving product '{product_id}': {e}")
            raise

        return await self._refresh()

    async def update_quantity(self, cart_item_id: str, new_quantity: int) -> schemas.Cart:
        """
        Set a line's quantity, reserving or returning the difference.

        A quantity of zero or less removes the line.

        Raises:
            NotFound: If the line does not exist for this owner
            InsufficientStock: If an increase exceeds available stock
        """
        if new_quantity <= 0:
            return await self.remove_from_cart(cart_item_id)

        item = await self._get_item(cart_item_id)
        delta = new_quantity - item.quantity
        if delta > 0:
            product = await self.inventory.reserve(item.product_id, delta)
        elif delta < 0:
            product = await self.inventory.restock(item.product_id, -delta)
        else:
            product = await self.inventory.get_product(item.product_id)

        item.quantity = new_quantity
        item.total_price = schemas.money(product.price * new_quantity)
        await self.store.replace(CART, item.id, item.to_document())
        logger.info(f"Cart {self.owner_id}: item {cart_item_id} quantity set to {new_quantity}")
        return await self._refresh()

    async def remove_from_cart(self, cart_item_id: str) -> schemas.Cart:
        """
        Delete a line and return its stock.

        The restock runs after the delete and is best effort.

        Raises:
            NotFound: If the line does not exist for this owner
        """
        item = await self._get_item(cart_item_id)

        async def delete_item(_):
            return await self.store.delete(CART, item.id)

        async def restock(_):
            return await self.inventory.restock(item.product_id, item.quantity)

        await (
            Workflow(f"remove cart item {cart_item_id}")
            .add("delete", delete_item)
            .best_effort("restock", restock)
            .run()
        )
        logger.info(f"Cart {self.owner_id}: removed item {cart_item_id}")
        return await self._refresh()

    async def clear_cart(self, restock: Optional[bool] = None) -> schemas.Cart:
        """
        Delete every line of the cart.

        Args:
            restock: Return each line's stock; defaults to ``restock_on_clear``.
                Checkout clears with ``restock=False`` because the stock now
                belongs to the order.
        """
        restock = self.restock_on_clear if restock is None else restock
        items = await self._items()
        for item in items:
            await self.store.delete(CART, item.id)
            if restock:
                try:
                    await self.inventory.restock(item.product_id, item.quantity)
                except Exception as e:
                    logger.warning(f"Cart {self.owner_id}: restock of product '{item.product_id}' failed: {e}")

        logger.info(f"Cart {self.owner_id}: cleared {len(items)} items (restock={restock})")
        return await self._refresh()
