"""Server-side record of an online checkout awaiting the gateway callback."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pawmart.models.order import OrderLine, OrderTotals, ShippingAddress
from pawmart.models.serialization import drop_none

TEMP_TXN_PREFIX = "TEMP-"


class PendingCheckoutStatus(str, Enum):
    INITIATED = "INITIATED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class PendingCheckout:
    """
    Reserved cart snapshot keyed by the gateway transaction id.

    Stock for `items` is already decremented while the record is
    INITIATED; leaving that state either materializes the order or
    restores the stock, exactly once.
    """
    txnid: str
    user_id: str
    items: List[OrderLine]
    totals: OrderTotals
    shipping_address: ShippingAddress
    amount: str
    created_at: str
    expires_at: str
    status: PendingCheckoutStatus = PendingCheckoutStatus.INITIATED
    coupon_code: Optional[str] = None
    notes: Optional[str] = None
    order_id: Optional[str] = None
    failure_reason: Optional[str] = None
    resolved_at: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == PendingCheckoutStatus.INITIATED

    def to_item(self) -> Dict[str, Any]:
        return drop_none({
            "txnid": self.txnid,
            "user_id": self.user_id,
            "items": [line.to_item() for line in self.items],
            **self.totals.to_item(),
            "shipping_address": self.shipping_address.to_item(),
            "amount": self.amount,
            "status": self.status.value,
            "coupon_code": self.coupon_code,
            "notes": self.notes,
            "order_id": self.order_id,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "resolved_at": self.resolved_at,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "PendingCheckout":
        return cls(
            txnid=item["txnid"],
            user_id=item["user_id"],
            items=[OrderLine.from_item(line) for line in item.get("items", [])],
            totals=OrderTotals.from_item(item),
            shipping_address=ShippingAddress.from_item(item.get("shipping_address") or {}),
            amount=item["amount"],
            status=PendingCheckoutStatus(item.get("status", PendingCheckoutStatus.INITIATED.value)),
            coupon_code=item.get("coupon_code"),
            notes=item.get("notes"),
            order_id=item.get("order_id"),
            failure_reason=item.get("failure_reason"),
            created_at=item["created_at"],
            expires_at=item["expires_at"],
            resolved_at=item.get("resolved_at"),
        )
