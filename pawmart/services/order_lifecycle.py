"""
Order Lifecycle Manager

Post-creation transitions and reads. Every write replaces the order
under a version condition, so two concurrent updates cannot silently
overwrite each other. Cancellation restores stock and marks refunds in
the same transaction as the status change.
"""

import logging
from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Sequence

from pawmart.core.exceptions import (
    ConflictError,
    InvalidOrderTransitionError,
    OrderNotFoundError,
    OrderValidationError,
)
from pawmart.core.security import ADMIN_ROLE
from pawmart.database.base import OrderPage, OrderQuery, OrderStore
from pawmart.database.operations import ReserveKey, TransactionCancelled, UpdateOrder, tracking_key
from pawmart.models.order import (
    CANCEL_NOTES_MAX_LENGTH,
    CANCELLABLE_STATUSES,
    CLOSED_STATUSES,
    CancelDetails,
    CancelReason,
    Order,
    OrderStatus,
    PaymentStatus,
)
from pawmart.models.serialization import utc_now
from pawmart.services.identifiers import allocate_tracking_number, is_valid_tracking_number
from pawmart.services.notification_service import NotificationService
from pawmart.services.stock_reservation import StockReservationEngine

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_DAYS = 3


def _parse_enum(enum_cls, value: str, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise OrderValidationError(
            f"Invalid {field}",
            {"field": field, "value": value, "allowed": [member.value for member in enum_cls]}
        )


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def _day_bounds(start_date: Optional[date], end_date: Optional[date]):
    """Expand dates to the first and last instant of their days (UTC)."""
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc) if start_date else None
    end = datetime.combine(end_date, time.max, tzinfo=timezone.utc) if end_date else None
    if start and end and start > end:
        raise OrderValidationError("start_date must not be after end_date")
    return start, end


class OrderLifecycleService:

    def __init__(
        self,
        store: OrderStore,
        reservation_engine: StockReservationEngine,
        notifications: NotificationService,
        tracking_attempts: Optional[int] = None,
    ):
        self.store = store
        self.reservation_engine = reservation_engine
        self.notifications = notifications
        self.tracking_attempts = tracking_attempts

    async def _get_existing(self, order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _get_owned(self, user_id: str, order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        if order is None or order.user_id != user_id:
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    def _next_version(order: Order, **changes) -> Order:
        return replace(
            order,
            version=order.version + 1,
            updated_at=utc_now().isoformat(),
            **changes,
        )

    async def _save(self, previous: Order, updated: Order, extra_operations: Sequence[Any] = ()) -> None:
        try:
            await self.store.commit([
                UpdateOrder(updated, expected_version=previous.version),
                *extra_operations,
            ])
        except TransactionCancelled as exc:
            logger.warning(f"Update of order {previous.order_id} cancelled: {exc}")
            raise ConflictError(
                "Order was modified concurrently, please retry",
                {"order_id": previous.order_id}
            )

    # ------------------------------------------------------------------
    # Admin transitions
    # ------------------------------------------------------------------

    async def update_order_status(
        self,
        order_id: str,
        new_status: str,
        delivery_date: Optional[datetime] = None,
    ) -> Order:
        status = _parse_enum(OrderStatus, new_status, "order_status")
        order = await self._get_existing(order_id)
        if order.order_status in CLOSED_STATUSES:
            raise InvalidOrderTransitionError(
                f"Order status cannot be changed once {order.order_status.value}",
                order.order_status.value,
                {"order_id": order_id, "requested_status": status.value}
            )
        now = utc_now()

        changes: Dict[str, Any] = {"order_status": status}
        if delivery_date is not None:
            changes["delivery_date"] = _as_utc(delivery_date).isoformat()

        if status == OrderStatus.SHIPPED:
            changes["shipped_at"] = now.isoformat()
            if delivery_date is None:
                changes["delivery_date"] = (now + timedelta(days=DEFAULT_DELIVERY_DAYS)).isoformat()
        elif status == OrderStatus.DELIVERED:
            changes["delivered_at"] = now.isoformat()
        elif status == OrderStatus.CANCELLED:
            changes["cancelled_at"] = now.isoformat()

        updated = self._next_version(order, **changes)
        await self._save(order, updated)

        logger.info(f"Order {order.order_number} status {order.order_status.value} -> {status.value}")
        await self.notifications.order_status_changed(updated)
        return updated

    async def update_payment_status(self, order_id: str, new_status: str) -> Order:
        status = _parse_enum(PaymentStatus, new_status, "payment_status")
        order = await self._get_existing(order_id)

        changes: Dict[str, Any] = {"payment_status": status}
        if status == PaymentStatus.PAID:
            now = utc_now().isoformat()
            changes["payment_completed_at"] = order.payment_completed_at or now
            changes["confirmed_at"] = order.confirmed_at or now

        updated = self._next_version(order, **changes)
        await self._save(order, updated)

        logger.info(f"Order {order.order_number} payment {order.payment_status.value} -> {status.value}")
        await self.notifications.payment_status_changed(updated)
        return updated

    # ------------------------------------------------------------------
    # Owner transitions
    # ------------------------------------------------------------------

    async def cancel_order(
        self,
        user_id: str,
        order_id: str,
        reason: str,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Cancel an order the user owns.

        One transaction: status and cancel details, stock restored for
        every line, Paid marked Refunded. The refund itself is executed
        outside this service.
        """
        cancel_reason = _parse_enum(CancelReason, reason, "reason")
        if notes and len(notes) > CANCEL_NOTES_MAX_LENGTH:
            raise OrderValidationError(
                f"Notes must be at most {CANCEL_NOTES_MAX_LENGTH} characters",
                {"field": "notes"}
            )

        order = await self._get_owned(user_id, order_id)
        if order.order_status not in CANCELLABLE_STATUSES:
            raise InvalidOrderTransitionError(
                f"Order cannot be cancelled in its current status ({order.order_status.value})",
                order.order_status.value,
                {"order_id": order_id}
            )

        now = utc_now().isoformat()
        changes: Dict[str, Any] = {
            "order_status": OrderStatus.CANCELLED,
            "cancelled_at": now,
            "cancel_details": CancelDetails(reason=cancel_reason, notes=notes, cancelled_at=now),
        }
        if order.payment_status == PaymentStatus.PAID:
            changes["payment_status"] = PaymentStatus.REFUNDED

        updated = self._next_version(order, **changes)
        restores = await self.reservation_engine.restore(order.order_items)
        await self._save(order, updated, restores)

        logger.info(
            f"Order {order.order_number} cancelled by user {user_id} "
            f"({cancel_reason.value}); payment {updated.payment_status.value}"
        )
        await self.notifications.order_cancelled(updated)
        return updated

    async def update_tracking_number(self, user_id: str, order_id: str) -> Order:
        order = await self._get_owned(user_id, order_id)
        tracking_number = await allocate_tracking_number(self.store, self.tracking_attempts)

        updated = self._next_version(order, tracking_number=tracking_number)
        await self._save(order, updated, [ReserveKey(tracking_key(tracking_number), order.order_id)])

        logger.info(f"Order {order.order_number} tracking number regenerated")
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order_by_tracking_number(self, user_id: str, tracking_number: str) -> Order:
        if not is_valid_tracking_number(tracking_number):
            raise OrderValidationError("Invalid tracking number format", {"tracking_number": tracking_number})
        order = await self.store.find_order_by_tracking_number(tracking_number)
        if order is None or order.user_id != user_id:
            raise OrderNotFoundError(tracking_number)
        return order

    async def get_order_by_id(self, current_user: Dict[str, Any], order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        is_admin = current_user.get("role") == ADMIN_ROLE
        if order is None or (not is_admin and order.user_id != current_user["user_id"]):
            raise OrderNotFoundError(order_id)
        return order

    async def _list(self, query: OrderQuery, status: Optional[str]) -> OrderPage:
        if status:
            query.status = _parse_enum(OrderStatus, status, "status")
        return await self.store.list_orders(query)

    async def get_my_orders(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> OrderPage:
        start, end = _day_bounds(start_date, end_date)
        query = OrderQuery(user_id=user_id, start=start, end=end, page=page, limit=limit)
        return await self._list(query, status)

    async def get_all_orders(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        user_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> OrderPage:
        start, end = _day_bounds(start_date, end_date)
        query = OrderQuery(user_id=user_id, start=start, end=end, page=page, limit=limit)
        return await self._list(query, status)
