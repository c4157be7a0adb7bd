"""
In-process storage backend for local development and tests.

Evaluates every condition of a transaction before applying any write,
under one asyncio lock, so it gives the same all-or-nothing and
per-operation failure reporting as DynamoDB TransactWriteItems.
Data is lost on restart and is not shared between workers.
"""

import asyncio
import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pawmart.core.exceptions import ValidationError
from pawmart.database.base import MAX_TRANSACTION_ITEMS, OrderPage, OrderQuery, OrderStore, paginate_orders
from pawmart.database.operations import (
    CONDITION_FAILED,
    AdjustStock,
    CheckProductExists,
    ClearCart,
    PutOrder,
    PutPendingCheckout,
    ReserveKey,
    ResolvePendingCheckout,
    StockDelta,
    TransactionCancelled,
    UpdateOrder,
    WriteFailure,
    check_distinct_targets,
)
from pawmart.models.catalog import Cart, Product, UserProfile
from pawmart.models.checkout import PendingCheckout, PendingCheckoutStatus
from pawmart.models.order import Order

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryOrderStore(OrderStore):

    def __init__(self):
        self._lock = asyncio.Lock()
        self.products: Dict[str, Product] = {}
        self.carts: Dict[str, Cart] = {}
        self.users: Dict[str, UserProfile] = {}
        self.orders: Dict[str, Order] = {}
        self.pending: Dict[str, PendingCheckout] = {}
        self.keys: Dict[str, str] = {}
        logger.warning(
            "Using in-memory order storage. Data is lost on restart and "
            "is not shared between workers."
        )

    # ------------------------------------------------------------------
    # Seeding (catalog, carts and users are owned by other services)
    # ------------------------------------------------------------------

    def add_product(self, product: Product) -> None:
        self.products[product.product_id] = copy.deepcopy(product)

    def delete_product(self, product_id: str) -> None:
        self.products.pop(product_id, None)

    def put_cart(self, cart: Cart) -> None:
        cart = copy.deepcopy(cart)
        cart.updated_at = cart.updated_at or _now_iso()
        self.carts[cart.user_id] = cart

    def put_user(self, user: UserProfile) -> None:
        self.users[user.user_id] = copy.deepcopy(user)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_product(self, product_id: str) -> Optional[Product]:
        return copy.deepcopy(self.products.get(product_id))

    async def get_cart(self, user_id: str) -> Optional[Cart]:
        return copy.deepcopy(self.carts.get(user_id))

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        return copy.deepcopy(self.users.get(user_id))

    async def get_order(self, order_id: str) -> Optional[Order]:
        return copy.deepcopy(self.orders.get(order_id))

    async def find_order_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        for order in self.orders.values():
            if order.tracking_number == tracking_number:
                return copy.deepcopy(order)
        return None

    async def key_exists(self, key: str) -> bool:
        return key in self.keys

    async def list_orders(self, query: OrderQuery) -> OrderPage:
        return paginate_orders(copy.deepcopy(list(self.orders.values())), query)

    async def get_pending_checkout(self, txnid: str) -> Optional[PendingCheckout]:
        return copy.deepcopy(self.pending.get(txnid))

    async def list_expired_pending_checkouts(self, now_iso: str) -> List[PendingCheckout]:
        now = datetime.fromisoformat(now_iso)
        return [
            copy.deepcopy(p) for p in self.pending.values()
            if p.is_open and datetime.fromisoformat(p.expires_at) <= now
        ]

    # ------------------------------------------------------------------
    # Transactional write
    # ------------------------------------------------------------------

    async def commit(self, operations: Sequence[Any]) -> None:
        if len(operations) > MAX_TRANSACTION_ITEMS:
            raise ValidationError(
                f"Maximum {MAX_TRANSACTION_ITEMS} items per transaction",
                {"operations": len(operations)}
            )
        check_distinct_targets(operations)

        async with self._lock:
            failures = [
                WriteFailure(index=i, operation=op, reason=CONDITION_FAILED)
                for i, op in enumerate(operations)
                if not self._condition_holds(op)
            ]
            if failures:
                raise TransactionCancelled(failures)

            now = _now_iso()
            for op in operations:
                self._apply(op, now)

    def _variation_matches(self, product: Product, delta: StockDelta) -> bool:
        index = delta.variation_index
        return (
            index is not None
            and 0 <= index < len(product.variations)
            and product.variations[index].variation_id == delta.variation_id
        )

    def _condition_holds(self, op: Any) -> bool:
        if isinstance(op, AdjustStock):
            product = self.products.get(op.product_id)
            if product is None:
                return False
            for delta in op.deltas:
                if delta.is_decrement and product.is_deleted:
                    return False
                if delta.variation_id is not None:
                    if not self._variation_matches(product, delta):
                        return False
                    current = product.variations[delta.variation_index].stock
                else:
                    current = product.stock
                if delta.is_decrement and current < -delta.quantity_change:
                    return False
            return True
        if isinstance(op, CheckProductExists):
            product = self.products.get(op.product_id)
            return product is not None and not product.is_deleted
        if isinstance(op, PutOrder):
            return op.order.order_id not in self.orders
        if isinstance(op, UpdateOrder):
            current = self.orders.get(op.order.order_id)
            return current is not None and current.version == op.expected_version
        if isinstance(op, ReserveKey):
            return op.key not in self.keys
        if isinstance(op, ClearCart):
            if op.expected_updated_at is None:
                return True
            cart = self.carts.get(op.user_id)
            return cart is not None and cart.updated_at == op.expected_updated_at
        if isinstance(op, PutPendingCheckout):
            return op.pending.txnid not in self.pending
        if isinstance(op, ResolvePendingCheckout):
            pending = self.pending.get(op.txnid)
            return pending is not None and pending.status == PendingCheckoutStatus.INITIATED
        raise TypeError(f"Unsupported storage operation: {type(op).__name__}")

    def _apply(self, op: Any, now: str) -> None:
        if isinstance(op, AdjustStock):
            product = self.products[op.product_id]
            for delta in op.deltas:
                if delta.variation_id is not None:
                    product.variations[delta.variation_index].stock += delta.quantity_change
                else:
                    product.stock += delta.quantity_change
        elif isinstance(op, (PutOrder, UpdateOrder)):
            self.orders[op.order.order_id] = copy.deepcopy(op.order)
        elif isinstance(op, ReserveKey):
            self.keys[op.key] = op.owner_id
        elif isinstance(op, ClearCart):
            self.carts[op.user_id] = Cart(user_id=op.user_id, items=[], updated_at=now)
        elif isinstance(op, PutPendingCheckout):
            self.pending[op.pending.txnid] = copy.deepcopy(op.pending)
        elif isinstance(op, ResolvePendingCheckout):
            pending = self.pending[op.txnid]
            pending.status = op.status
            pending.order_id = op.order_id
            pending.failure_reason = op.failure_reason
            pending.resolved_at = now
