"""
Checkout Orchestrator

    START --validate--> VALIDATED --fresh cart read, non-empty--> CART_OK
    CART_OK --reserve--> RESERVED | OUT_OF_STOCK (400)
    RESERVED --COD--> order + stock decrements + cart clear, one transaction (201)
    RESERVED --ONLINE--> PaymentService: reservation + pending checkout, gateway redirect (200)

The COD cart clear is conditioned on the cart version read here, so a
cart edited between read and commit aborts the whole transaction.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pawmart.core.exceptions import OrderValidationError
from pawmart.database.base import OrderStore
from pawmart.database.operations import ClearCart, TransactionCancelled
from pawmart.models.catalog import UserProfile
from pawmart.models.order import Order, PaymentMethod, PaymentStatus, ShippingAddress
from pawmart.services.notification_service import NotificationService
from pawmart.services.order_materializer import OrderMaterializer
from pawmart.services.payment_service import PaymentInitiation, PaymentService
from pawmart.services.stock_reservation import StockReservationEngine

logger = logging.getLogger(__name__)


@dataclass
class CheckoutRequest:
    shipping_address: ShippingAddress
    payment_method: str
    coupon_code: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class CheckoutResult:
    payment_method: PaymentMethod
    order: Optional[Order] = None
    payment: Optional[PaymentInitiation] = None

    @property
    def status_code(self) -> int:
        return 201 if self.order is not None else 200

    def to_dict(self) -> Dict[str, Any]:
        if self.order is not None:
            return self.order.to_dict()
        return self.payment.to_dict()


class CheckoutService:

    def __init__(
        self,
        store: OrderStore,
        reservation_engine: StockReservationEngine,
        materializer: OrderMaterializer,
        payment_service: PaymentService,
        notifications: NotificationService,
    ):
        self.store = store
        self.reservation_engine = reservation_engine
        self.materializer = materializer
        self.payment_service = payment_service
        self.notifications = notifications

    @staticmethod
    def _validate(request: CheckoutRequest) -> PaymentMethod:
        try:
            payment_method = PaymentMethod(request.payment_method)
        except ValueError:
            raise OrderValidationError(
                "Invalid payment method",
                {"payment_method": request.payment_method, "allowed": [m.value for m in PaymentMethod]}
            )
        missing = request.shipping_address.missing_fields()
        if missing:
            raise OrderValidationError("Shipping address is incomplete", {"missing_fields": missing})
        return payment_method

    async def _resolve_user(self, current_user: Dict[str, Any]) -> UserProfile:
        """Profile on record, falling back to the token claims."""
        user_id = current_user["user_id"]
        profile = await self.store.get_user(user_id)
        if profile is None:
            profile = UserProfile(user_id=user_id)
        profile.email = profile.email or current_user.get("email")
        profile.name = profile.name or current_user.get("name")
        profile.phone = profile.phone or current_user.get("phone")
        return profile

    async def create_order(self, current_user: Dict[str, Any], request: CheckoutRequest) -> CheckoutResult:
        payment_method = self._validate(request)
        user = await self._resolve_user(current_user)

        cart = await self.store.get_cart(user.user_id)
        if cart is None or cart.is_empty:
            raise OrderValidationError("Cart is empty")

        if payment_method == PaymentMethod.ONLINE:
            payment = await self.payment_service.initiate_online_payment(
                user=user,
                cart=cart,
                shipping_address=request.shipping_address,
                coupon_code=request.coupon_code,
                notes=request.notes,
            )
            return CheckoutResult(payment_method=payment_method, payment=payment)

        reservation = await self.reservation_engine.reserve(cart.items)
        materialized = await self.materializer.materialize(
            user_id=user.user_id,
            lines=reservation.lines,
            totals=reservation.totals,
            shipping_address=request.shipping_address,
            payment_method=PaymentMethod.COD,
            payment_status=PaymentStatus.PENDING,
            coupon_code=request.coupon_code,
            notes=request.notes,
        )

        try:
            await self.store.commit([
                *reservation.adjustments,
                *materialized.operations,
                ClearCart(user.user_id, expected_updated_at=cart.updated_at),
            ])
        except TransactionCancelled as exc:
            logger.warning(f"COD checkout for user {user.user_id} cancelled: {exc}")
            raise self.reservation_engine.conflict_error(reservation.lines, exc)

        order = materialized.order
        logger.info(
            f"COD order {order.order_number} created for user {user.user_id} "
            f"(total {order.total_amount})"
        )
        await self.notifications.order_placed(order, user)
        return CheckoutResult(payment_method=payment_method, order=order)
