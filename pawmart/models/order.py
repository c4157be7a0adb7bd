"""
Order domain model

Orders, their embedded line snapshots, shipping address and the
status enums. Money is Decimal throughout; `to_item`/`from_item` map to
the DynamoDB representation and `to_dict` to the JSON API shape.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pawmart.models.serialization import decimal_to_float, drop_none, to_decimal


class OrderStatus(str, Enum):
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    INITIATED = "Initiated"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class PaymentMethod(str, Enum):
    COD = "COD"
    ONLINE = "ONLINE"


class CancelReason(str, Enum):
    CHANGED_MIND = "Changed my mind"
    BETTER_PRICE = "Found better price elsewhere"
    SHIPPING_TOO_LONG = "Shipping takes too long"
    ORDERED_BY_MISTAKE = "Ordered by mistake"
    NOT_REQUIRED = "Product not required anymore"
    OTHER = "Other"


CANCELLABLE_STATUSES = frozenset({OrderStatus.PROCESSING, OrderStatus.SHIPPED})

# Stock has already been given back; no further status changes
CLOSED_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.RETURNED})

CANCEL_NOTES_MAX_LENGTH = 500

REQUIRED_ADDRESS_FIELDS = ("full_name", "address_line1", "city", "state", "postal_code")


@dataclass
class ShippingAddress:
    full_name: str
    address_line1: str
    city: str
    state: str
    postal_code: str
    phone: Optional[str] = None
    address_line2: Optional[str] = None
    country: str = "India"

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_ADDRESS_FIELDS if not str(getattr(self, name) or "").strip()]

    def to_item(self) -> Dict[str, Any]:
        return drop_none({
            "full_name": self.full_name,
            "phone": self.phone,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "ShippingAddress":
        return cls(
            full_name=item.get("full_name", ""),
            phone=item.get("phone"),
            address_line1=item.get("address_line1", ""),
            address_line2=item.get("address_line2"),
            city=item.get("city", ""),
            state=item.get("state", ""),
            postal_code=item.get("postal_code", ""),
            country=item.get("country") or "India",
        )


@dataclass
class OrderLine:
    """A purchased line, priced and snapshotted at reservation time."""
    product_id: str
    quantity: int
    price: Decimal
    subtotal: Decimal
    product_snapshot: Dict[str, Any] = field(default_factory=dict)
    variation_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.product_snapshot.get("name", self.product_id)

    def to_item(self) -> Dict[str, Any]:
        return drop_none({
            "product_id": self.product_id,
            "variation_id": self.variation_id,
            "quantity": self.quantity,
            "price": self.price,
            "subtotal": self.subtotal,
            "product_snapshot": self.product_snapshot,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "OrderLine":
        return cls(
            product_id=item["product_id"],
            variation_id=item.get("variation_id"),
            quantity=int(item["quantity"]),
            price=to_decimal(item["price"]),
            subtotal=to_decimal(item["subtotal"]),
            product_snapshot=dict(item.get("product_snapshot") or {}),
        )


@dataclass
class OrderTotals:
    items_subtotal: Decimal
    tax_amount: Decimal
    shipping_fee: Decimal
    total_amount: Decimal

    def to_item(self) -> Dict[str, Any]:
        return {
            "items_subtotal": self.items_subtotal,
            "tax_amount": self.tax_amount,
            "shipping_fee": self.shipping_fee,
            "total_amount": self.total_amount,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "OrderTotals":
        return cls(
            items_subtotal=to_decimal(item["items_subtotal"]),
            tax_amount=to_decimal(item["tax_amount"]),
            shipping_fee=to_decimal(item["shipping_fee"]),
            total_amount=to_decimal(item["total_amount"]),
        )


@dataclass
class CancelDetails:
    reason: CancelReason
    cancelled_at: str
    notes: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        return drop_none({
            "reason": self.reason.value,
            "notes": self.notes,
            "cancelled_at": self.cancelled_at,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "CancelDetails":
        return cls(
            reason=CancelReason(item["reason"]),
            notes=item.get("notes"),
            cancelled_at=item["cancelled_at"],
        )


@dataclass
class PaymentDetails:
    transaction_id: str
    payment_mode: Optional[str] = None
    gateway: str = "Easebuzz"

    def to_item(self) -> Dict[str, Any]:
        return drop_none({
            "gateway": self.gateway,
            "transaction_id": self.transaction_id,
            "payment_mode": self.payment_mode,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "PaymentDetails":
        return cls(
            gateway=item.get("gateway", "Easebuzz"),
            transaction_id=item["transaction_id"],
            payment_mode=item.get("payment_mode"),
        )


@dataclass
class Order:
    order_id: str
    user_id: str
    order_number: str
    tracking_number: str
    order_items: List[OrderLine]
    totals: OrderTotals
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    order_status: OrderStatus
    created_at: str
    updated_at: str
    version: int = 1
    coupon_code: Optional[str] = None
    notes: Optional[str] = None
    payment_details: Optional[PaymentDetails] = None
    cancel_details: Optional[CancelDetails] = None
    payment_initiated_at: Optional[str] = None
    payment_completed_at: Optional[str] = None
    confirmed_at: Optional[str] = None
    shipped_at: Optional[str] = None
    delivered_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    delivery_date: Optional[str] = None

    @property
    def total_amount(self) -> Decimal:
        return self.totals.total_amount

    def to_item(self) -> Dict[str, Any]:
        item = {
            "order_id": self.order_id,
            "user_id": self.user_id,
            "order_number": self.order_number,
            "tracking_number": self.tracking_number,
            "order_items": [line.to_item() for line in self.order_items],
            **self.totals.to_item(),
            "shipping_address": self.shipping_address.to_item(),
            "payment_method": self.payment_method.value,
            "payment_status": self.payment_status.value,
            "order_status": self.order_status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
            "coupon_code": self.coupon_code,
            "notes": self.notes,
            "payment_details": self.payment_details.to_item() if self.payment_details else None,
            "cancel_details": self.cancel_details.to_item() if self.cancel_details else None,
            "payment_initiated_at": self.payment_initiated_at,
            "payment_completed_at": self.payment_completed_at,
            "confirmed_at": self.confirmed_at,
            "shipped_at": self.shipped_at,
            "delivered_at": self.delivered_at,
            "cancelled_at": self.cancelled_at,
            "delivery_date": self.delivery_date,
        }
        return drop_none(item)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Order":
        payment_details = item.get("payment_details")
        cancel_details = item.get("cancel_details")
        return cls(
            order_id=item["order_id"],
            user_id=item["user_id"],
            order_number=item["order_number"],
            tracking_number=item["tracking_number"],
            order_items=[OrderLine.from_item(line) for line in item.get("order_items", [])],
            totals=OrderTotals.from_item(item),
            shipping_address=ShippingAddress.from_item(item.get("shipping_address") or {}),
            payment_method=PaymentMethod(item["payment_method"]),
            payment_status=PaymentStatus(item["payment_status"]),
            order_status=OrderStatus(item["order_status"]),
            created_at=item["created_at"],
            updated_at=item["updated_at"],
            version=int(item.get("version", 1)),
            coupon_code=item.get("coupon_code"),
            notes=item.get("notes"),
            payment_details=PaymentDetails.from_item(payment_details) if payment_details else None,
            cancel_details=CancelDetails.from_item(cancel_details) if cancel_details else None,
            payment_initiated_at=item.get("payment_initiated_at"),
            payment_completed_at=item.get("payment_completed_at"),
            confirmed_at=item.get("confirmed_at"),
            shipped_at=item.get("shipped_at"),
            delivered_at=item.get("delivered_at"),
            cancelled_at=item.get("cancelled_at"),
            delivery_date=item.get("delivery_date"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe representation for API responses."""
        return decimal_to_float(self.to_item())
