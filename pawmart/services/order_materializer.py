"""
Order Materializer

Builds the durable Order from reserved, priced lines and returns the
writes that persist it: the order itself plus the uniqueness claims on
its order number and tracking number. The caller commits them in the
same transaction as its stock decrements or pending-checkout update.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from pawmart.database.base import OrderStore
from pawmart.database.operations import PutOrder, ReserveKey, order_number_key, tracking_key
from pawmart.models.order import (
    Order,
    OrderLine,
    OrderStatus,
    OrderTotals,
    PaymentDetails,
    PaymentMethod,
    PaymentStatus,
    ShippingAddress,
)
from pawmart.models.serialization import utc_now_iso
from pawmart.services.identifiers import allocate_tracking_number, generate_order_number

logger = logging.getLogger(__name__)


@dataclass
class MaterializedOrder:
    order: Order
    operations: List[Any]


class OrderMaterializer:

    def __init__(self, store: OrderStore, tracking_attempts: Optional[int] = None):
        self.store = store
        self.tracking_attempts = tracking_attempts

    async def materialize(
        self,
        *,
        user_id: str,
        lines: Sequence[OrderLine],
        totals: OrderTotals,
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        payment_status: PaymentStatus,
        coupon_code: Optional[str] = None,
        notes: Optional[str] = None,
        payment_details: Optional[PaymentDetails] = None,
        payment_initiated_at: Optional[str] = None,
        payment_completed_at: Optional[str] = None,
    ) -> MaterializedOrder:
        now = utc_now_iso()
        order = Order(
            order_id=str(uuid.uuid4()),
            user_id=user_id,
            order_number=generate_order_number(),
            tracking_number=await allocate_tracking_number(self.store, self.tracking_attempts),
            order_items=list(lines),
            totals=totals,
            shipping_address=shipping_address,
            payment_method=payment_method,
            payment_status=payment_status,
            order_status=OrderStatus.PROCESSING,
            created_at=now,
            updated_at=now,
            coupon_code=coupon_code,
            notes=notes,
            payment_details=payment_details,
            payment_initiated_at=payment_initiated_at,
            payment_completed_at=payment_completed_at,
            confirmed_at=payment_completed_at if payment_status == PaymentStatus.PAID else None,
        )

        logger.debug(f"Materialized order {order.order_number} for user {user_id}")
        return MaterializedOrder(
            order=order,
            operations=[
                PutOrder(order),
                ReserveKey(order_number_key(order.order_number), order.order_id),
                ReserveKey(tracking_key(order.tracking_number), order.order_id),
            ],
        )
