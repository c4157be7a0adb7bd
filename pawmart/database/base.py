"""Storage interface shared by the DynamoDB and in-memory backends."""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pawmart.models.catalog import Cart, Product, UserProfile
from pawmart.models.checkout import PendingCheckout
from pawmart.models.order import Order, OrderStatus

MAX_TRANSACTION_ITEMS = 100


@dataclass
class OrderQuery:
    user_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    page: int = 1
    limit: int = 10

    def matches(self, order: Order) -> bool:
        if self.user_id and order.user_id != self.user_id:
            return False
        if self.status and order.order_status != self.status:
            return False
        created = datetime.fromisoformat(order.created_at)
        if self.start and created < self.start:
            return False
        if self.end and created > self.end:
            return False
        return True


@dataclass
class OrderPage:
    orders: List[Order]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orders": [order.to_dict() for order in self.orders],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "pages": self.pages,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }


def paginate_orders(orders: List[Order], query: OrderQuery) -> OrderPage:
    """Filter, sort newest first and slice one page."""
    matching = [o for o in orders if query.matches(o)]
    matching.sort(key=lambda o: o.created_at, reverse=True)
    start = (query.page - 1) * query.limit
    return OrderPage(
        orders=matching[start:start + query.limit],
        total=len(matching),
        page=query.page,
        limit=query.limit,
    )


class OrderStore(ABC):
    """Reads plus one transactional `commit` for every mutation."""

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        ...

    @abstractmethod
    async def get_cart(self, user_id: str) -> Optional[Cart]:
        ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        ...

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    async def find_order_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        ...

    @abstractmethod
    async def key_exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def list_orders(self, query: OrderQuery) -> OrderPage:
        ...

    @abstractmethod
    async def get_pending_checkout(self, txnid: str) -> Optional[PendingCheckout]:
        ...

    @abstractmethod
    async def list_expired_pending_checkouts(self, now_iso: str) -> List[PendingCheckout]:
        ...

    @abstractmethod
    async def commit(self, operations: Sequence[Any]) -> None:
        """
        Apply all operations atomically.

        Raises:
            TransactionCancelled: if any condition fails; nothing is written
        """

    async def health_check(self) -> Dict[str, Any]:
        return {"storage": type(self).__name__, "healthy": True}
