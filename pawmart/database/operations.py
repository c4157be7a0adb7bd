"""
Conditional write operations committed as one storage transaction.

Services assemble a list of these and hand it to `store.commit(ops)`.
Either every condition holds and every write is applied, or nothing is
written and `TransactionCancelled` reports each failing operation by
its position in the list.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from pawmart.models.checkout import PendingCheckout, PendingCheckoutStatus
from pawmart.models.order import Order

# Failure reasons reported per operation
CONDITION_FAILED = "ConditionalCheckFailed"
TRANSACTION_CONFLICT = "TransactionConflict"

# Cancellations caused by concurrent or throttled activity, not by a guard
TRANSIENT_REASONS = frozenset({
    TRANSACTION_CONFLICT,
    "ThrottlingError",
    "ProvisionedThroughputExceeded",
})


@dataclass
class StockDelta:
    """
    Change to one stock counter: the product's own, or the variation at
    `variation_index` whose id must still be `variation_id`.
    """
    quantity_change: int
    variation_id: Optional[str] = None
    variation_index: Optional[int] = None

    @property
    def is_decrement(self) -> bool:
        return self.quantity_change < 0


@dataclass
class AdjustStock:
    """
    Apply every delta for one product in a single write.

    Decrements require the current counter to cover the quantity; all
    deltas require the product (and the addressed variation) to exist.
    """
    product_id: str
    deltas: List[StockDelta]


@dataclass
class CheckProductExists:
    product_id: str


@dataclass
class PutOrder:
    order: Order


@dataclass
class UpdateOrder:
    """Replace an order, guarded by the version that was read."""
    order: Order
    expected_version: int


@dataclass
class ReserveKey:
    """Claim a globally unique key such as an order or tracking number."""
    key: str
    owner_id: str


@dataclass
class ClearCart:
    """Empty a cart; guarded by `expected_updated_at` when one is given."""
    user_id: str
    expected_updated_at: Optional[str] = None


@dataclass
class PutPendingCheckout:
    pending: PendingCheckout


@dataclass
class ResolvePendingCheckout:
    """Move a pending checkout out of INITIATED; fails if already resolved."""
    txnid: str
    status: PendingCheckoutStatus
    order_id: Optional[str] = None
    failure_reason: Optional[str] = None


@dataclass
class WriteFailure:
    index: int
    operation: Any
    reason: str


class TransactionCancelled(Exception):
    """The whole transaction was rejected; nothing was written."""

    def __init__(self, failures: List[WriteFailure]):
        self.failures = failures
        summary = ", ".join(f"#{f.index} {type(f.operation).__name__}: {f.reason}" for f in failures)
        super().__init__(f"Transaction cancelled ({summary})")

    def failed_indexes(self) -> List[int]:
        return [f.index for f in self.failures]

    def failures_of(self, op_type) -> List[WriteFailure]:
        return [f for f in self.failures if isinstance(f.operation, op_type)]

    def condition_failures_of(self, op_type) -> List[WriteFailure]:
        """Failures of `op_type` whose guard evaluated false."""
        return [f for f in self.failures_of(op_type) if f.reason == CONDITION_FAILED]

    @property
    def is_transient(self) -> bool:
        """True when every failure is a conflict or throttle; the same writes may succeed on retry."""
        return bool(self.failures) and all(f.reason in TRANSIENT_REASONS for f in self.failures)


def operation_target(op: Any) -> Tuple[str, str]:
    """(table kind, key) of the item an operation writes or checks."""
    if isinstance(op, (AdjustStock, CheckProductExists)):
        return "product", op.product_id
    if isinstance(op, (PutOrder, UpdateOrder)):
        return "order", op.order.order_id
    if isinstance(op, ReserveKey):
        return "key", op.key
    if isinstance(op, ClearCart):
        return "cart", op.user_id
    if isinstance(op, PutPendingCheckout):
        return "pending", op.pending.txnid
    if isinstance(op, ResolvePendingCheckout):
        return "pending", op.txnid
    raise TypeError(f"Unsupported storage operation: {type(op).__name__}")


def check_distinct_targets(operations: Sequence[Any]) -> None:
    """A transaction may touch each item at most once."""
    seen = set()
    for op in operations:
        target = operation_target(op)
        if target in seen:
            raise ValueError(f"Transaction touches {target[0]} '{target[1]}' more than once")
        seen.add(target)


def order_number_key(order_number: str) -> str:
    return f"ORDER_NUMBER#{order_number}"


def tracking_key(tracking_number: str) -> str:
    return f"TRACKING#{tracking_number}"
