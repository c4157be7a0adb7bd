"""
Online payment flow

Initiation (saga):
1. Reserve stock and persist a pending checkout in ONE transaction
2. Ask the gateway for a hosted payment session
3. If the gateway call fails: compensating transaction restores the
   stock and closes the pending checkout as FAILED

Callback:
- Signature is verified before anything is read; a mismatch touches nothing
- The pending checkout must still be INITIATED; moving it out of that
  state is the condition of the same transaction that writes the order
  (success) or restores the stock (failure), so a replayed callback can
  never materialize a second order or restore stock twice
- Every outcome is a redirect URL; callers never see an error body
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

from pawmart.core.config import settings
from pawmart.core.exceptions import (
    ConflictError,
    IdempotencyViolation,
    OrderValidationError,
    PaymentVerificationError,
)
from pawmart.core.retry import TRANSACTION_RETRY_CONFIG, with_retry
from pawmart.database.base import OrderStore
from pawmart.database.operations import (
    CheckProductExists,
    ClearCart,
    PutPendingCheckout,
    ResolvePendingCheckout,
    TransactionCancelled,
)
from pawmart.models.catalog import Cart, UserProfile
from pawmart.models.checkout import TEMP_TXN_PREFIX, PendingCheckout, PendingCheckoutStatus
from pawmart.models.order import PaymentDetails, PaymentMethod, PaymentStatus, ShippingAddress
from pawmart.models.serialization import utc_now, utc_now_iso
from pawmart.services.identifiers import generate_temp_txnid
from pawmart.services.notification_service import NotificationService
from pawmart.services.order_materializer import OrderMaterializer
from pawmart.services.payment_gateway import EasebuzzGateway, decode_echo_payload, encode_echo_payload
from pawmart.services.pricing import format_amount
from pawmart.services.stock_reservation import StockReservationEngine

logger = logging.getLogger(__name__)

GATEWAY_SUCCESS = "success"


@dataclass
class PaymentInitiation:
    payment_url: str
    temp_order_id: str
    amount: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_url": self.payment_url,
            "temp_order_id": self.temp_order_id,
            "amount": self.amount,
        }


@dataclass
class CallbackResult:
    success: bool
    redirect_url: str
    message: str
    order_id: Optional[str] = None


class PaymentService:

    def __init__(
        self,
        store: OrderStore,
        gateway: EasebuzzGateway,
        reservation_engine: StockReservationEngine,
        materializer: OrderMaterializer,
        notifications: NotificationService,
        frontend_url: Optional[str] = None,
        callback_url: Optional[str] = None,
        pending_ttl_minutes: Optional[int] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.reservation_engine = reservation_engine
        self.materializer = materializer
        self.notifications = notifications
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")
        self.callback_url = callback_url or settings.PAYMENT_CALLBACK_URL
        self.pending_ttl = timedelta(minutes=pending_ttl_minutes or settings.PENDING_CHECKOUT_TTL_MINUTES)

    @with_retry(TRANSACTION_RETRY_CONFIG)
    async def _commit(self, operations) -> None:
        """Commit, retrying cancellations caused only by concurrent writers."""
        await self.store.commit(operations)

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate_online_payment(
        self,
        *,
        user: UserProfile,
        cart: Optional[Cart],
        shipping_address: ShippingAddress,
        coupon_code: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> PaymentInitiation:
        """
        Reserve the cart and open a gateway session.

        Raises:
            OrderValidationError: empty cart, incomplete address or no email
            OutOfStockError: one or more lines cannot be reserved
            GatewayUnavailableError / PaymentInitiationError: after the
                reservation has been rolled back
        """
        if cart is None or cart.is_empty:
            raise OrderValidationError("Cart is empty")
        missing = shipping_address.missing_fields()
        if missing:
            raise OrderValidationError("Shipping address is incomplete", {"missing_fields": missing})
        if not user.email:
            raise OrderValidationError("An email address is required for online payment")

        reservation = await self.reservation_engine.reserve(cart.items)
        now = utc_now()
        pending = PendingCheckout(
            txnid=generate_temp_txnid(),
            user_id=user.user_id,
            items=reservation.lines,
            totals=reservation.totals,
            shipping_address=shipping_address,
            amount=format_amount(reservation.totals.total_amount),
            coupon_code=coupon_code,
            notes=notes,
            created_at=now.isoformat(),
            expires_at=(now + self.pending_ttl).isoformat(),
        )

        try:
            await self._commit([*reservation.adjustments, PutPendingCheckout(pending)])
        except TransactionCancelled as exc:
            raise self.reservation_engine.conflict_error(reservation.lines, exc)

        logger.info(f"Stock reserved for pending checkout {pending.txnid} (amount {pending.amount})")

        params = self.gateway.build_initiation_params(
            txnid=pending.txnid,
            amount=pending.amount,
            firstname=user.name,
            email=user.email,
            phone=shipping_address.phone or user.phone,
            callback_url=self.callback_url,
            udf={
                "udf1": user.user_id,
                "udf2": encode_echo_payload({
                    "fullName": shipping_address.full_name,
                    "city": shipping_address.city,
                    "postalCode": shipping_address.postal_code,
                    "userId": user.user_id,
                }),
            },
        )

        try:
            session = await self.gateway.initiate(params)
        except Exception as e:
            logger.error(f"Payment initiation failed for {pending.txnid}, releasing reservation: {e}")
            await self._release_reservation(pending, reservation.adjustments, str(e))
            raise

        logger.info(f"Payment session opened for {pending.txnid}")
        return PaymentInitiation(
            payment_url=session.payment_url,
            temp_order_id=pending.txnid,
            amount=pending.amount,
        )

    async def _release_reservation(self, pending: PendingCheckout, adjustments, reason: str) -> None:
        """Compensating transaction for a failed initiation."""
        operations = [
            ResolvePendingCheckout(pending.txnid, PendingCheckoutStatus.FAILED, failure_reason=reason),
            *StockReservationEngine.release(adjustments),
        ]
        try:
            await self._commit(operations)
            logger.info(f"Reservation for {pending.txnid} released")
        except Exception as e:
            logger.critical(
                f"STOCK ROLLBACK FAILED for pending checkout {pending.txnid} - manual intervention required. "
                f"Reason: {reason}, Rollback error: {e}"
            )

    # ------------------------------------------------------------------
    # Callback
    # ------------------------------------------------------------------

    def _success_redirect(self, order_id: str) -> str:
        return f"{self.frontend_url}/order-success?{urlencode({'orderId': order_id})}"

    def _failure(self, message: str) -> CallbackResult:
        return CallbackResult(
            success=False,
            redirect_url=f"{self.frontend_url}/order-failed?{urlencode({'message': message})}",
            message=message,
        )

    async def handle_callback(self, data: Mapping[str, str]) -> CallbackResult:
        txnid = data.get("txnid")
        status = data.get("status")
        if not txnid or not status or not data.get("hash"):
            logger.warning("Payment callback missing txnid, status or hash")
            return self._failure("Invalid payment callback")

        if not self.gateway.verify_callback(data):
            logger.warning(f"Payment callback signature mismatch for {txnid} - possible tampering")
            return self._failure("Payment verification failed")

        try:
            pending = await self._load_open_pending(txnid)
            self._check_echo(pending, data)

            if status == GATEWAY_SUCCESS:
                return await self._complete(pending, data)
            return await self._fail(pending, status)

        except IdempotencyViolation as e:
            logger.info(f"Ignoring callback for {txnid}: {e.message}")
            return self._failure(e.message)
        except PaymentVerificationError as e:
            logger.warning(f"Payment callback for {txnid} rejected: {e.message} {e.details}")
            return self._failure("Payment verification failed")
        except Exception as e:
            logger.error(f"Error processing payment callback for {txnid}: {e}", exc_info=True)
            return self._failure("Error processing payment")

    async def _load_open_pending(self, txnid: str) -> PendingCheckout:
        if not txnid.startswith(TEMP_TXN_PREFIX):
            raise IdempotencyViolation(txnid)
        pending = await self.store.get_pending_checkout(txnid)
        if pending is None:
            raise IdempotencyViolation(txnid, "Unknown payment reference")
        if not pending.is_open:
            raise IdempotencyViolation(txnid)
        return pending

    def _check_echo(self, pending: PendingCheckout, data: Mapping[str, str]) -> None:
        if data.get("udf1") != pending.user_id:
            raise PaymentVerificationError("Echoed user does not match checkout", {"txnid": pending.txnid})

        echo = decode_echo_payload(data.get("udf2"))
        if echo["userId"] != pending.user_id or echo["postalCode"] != pending.shipping_address.postal_code:
            raise PaymentVerificationError("Echoed address does not match checkout", {"txnid": pending.txnid})

        try:
            amount_matches = Decimal(data.get("amount", "")) == Decimal(pending.amount)
        except InvalidOperation:
            amount_matches = False
        if not amount_matches:
            raise PaymentVerificationError("Callback amount does not match checkout", {"txnid": pending.txnid})

    async def _complete(self, pending: PendingCheckout, data: Mapping[str, str]) -> CallbackResult:
        materialized = await self.materializer.materialize(
            user_id=pending.user_id,
            lines=pending.items,
            totals=pending.totals,
            shipping_address=pending.shipping_address,
            payment_method=PaymentMethod.ONLINE,
            payment_status=PaymentStatus.PAID,
            coupon_code=pending.coupon_code,
            notes=pending.notes,
            payment_details=PaymentDetails(
                transaction_id=pending.txnid,
                payment_mode=data.get("mode") or "UNKNOWN",
            ),
            payment_initiated_at=pending.created_at,
            payment_completed_at=utc_now_iso(),
        )
        order = materialized.order
        product_ids = list(dict.fromkeys(line.product_id for line in pending.items))

        operations = [
            ResolvePendingCheckout(pending.txnid, PendingCheckoutStatus.COMPLETED, order_id=order.order_id),
            *[CheckProductExists(product_id) for product_id in product_ids],
            *materialized.operations,
            ClearCart(pending.user_id),
        ]
        try:
            await self._commit(operations)
        except TransactionCancelled as exc:
            if exc.condition_failures_of(ResolvePendingCheckout):
                raise IdempotencyViolation(pending.txnid)
            if exc.condition_failures_of(CheckProductExists):
                logger.error(
                    f"Paid checkout {pending.txnid} references products that no longer exist; "
                    f"closing it without an order - refund required"
                )
                await self._restore_and_close(pending, "product_unavailable")
                return self._failure("Some items are no longer available. Your payment will be refunded.")
            logger.error(
                f"Paid checkout {pending.txnid} could not be committed after retries ({exc}); "
                f"left INITIATED for the next callback or reconciliation"
            )
            raise ConflictError("Order could not be created, please retry", {"txnid": pending.txnid})

        logger.info(f"Order {order.order_number} created from paid checkout {pending.txnid}")
        await self.notifications.order_placed(order)
        return CallbackResult(
            success=True,
            redirect_url=self._success_redirect(order.order_id),
            message="Payment successful",
            order_id=order.order_id,
        )

    async def _fail(self, pending: PendingCheckout, status: str) -> CallbackResult:
        await self._restore_and_close(pending, f"gateway status: {status}")
        logger.info(f"Payment {pending.txnid} failed with status {status}; reservation restored")
        return self._failure(f"Payment failed: {status}")

    async def _restore_and_close(self, pending: PendingCheckout, reason: str) -> None:
        """Restore reserved stock and close the checkout as FAILED, exactly once."""
        operations = [
            ResolvePendingCheckout(pending.txnid, PendingCheckoutStatus.FAILED, failure_reason=reason),
            *await self.reservation_engine.restore(pending.items),
        ]
        try:
            await self._commit(operations)
        except TransactionCancelled as exc:
            if exc.condition_failures_of(ResolvePendingCheckout):
                raise IdempotencyViolation(pending.txnid)
            raise ConflictError("Stock restore conflicted, please retry", {"txnid": pending.txnid})

    # ------------------------------------------------------------------
    # Abandoned checkouts
    # ------------------------------------------------------------------

    async def release_expired_checkouts(self) -> int:
        """
        Give back stock held by checkouts whose callback never arrived.

        Returns the number of checkouts released.
        """
        released = 0
        for pending in await self.store.list_expired_pending_checkouts(utc_now_iso()):
            try:
                await self._restore_and_close(pending, "expired")
                released += 1
            except IdempotencyViolation:
                logger.debug(f"Pending checkout {pending.txnid} resolved concurrently")
            except ConflictError as e:
                logger.warning(f"Could not release expired checkout {pending.txnid}: {e.message}")
        if released:
            logger.info(f"Released {released} expired pending checkouts")
        return released
