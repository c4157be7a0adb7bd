"""
Integration Tests for post-creation order lifecycle

Tests for:
- Cancellation: stock restore, refund marking, guards
- Admin status and payment transitions
- Tracking number regeneration and lookup
- Listing with pagination and filters
"""

import copy
from datetime import date, datetime, timedelta, timezone

import pytest

from pawmart.core.exceptions import (
    ConflictError,
    InvalidOrderTransitionError,
    OrderNotFoundError,
    OrderValidationError,
)
from pawmart.database.operations import tracking_key
from pawmart.models.order import CancelReason, OrderStatus, PaymentStatus
from pawmart.services.checkout_service import CheckoutRequest

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture
def place_order(services, store, fill_cart, shipping_address):
    """Place a COD order and return the stored copy."""

    async def _place(lines=(("PROD-KIBBLE", 2), ("PROD-LEASH", 1, "VAR-L")), user_id=USER_ID):
        fill_cart(list(lines), user_id=user_id)
        result = await services.checkout.create_order(
            {"user_id": user_id}, CheckoutRequest(shipping_address=shipping_address, payment_method="COD")
        )
        return store.orders[result.order.order_id]

    return _place


class TestCancelOrder:
    """Tests for OrderLifecycleService.cancel_order"""

    @pytest.mark.asyncio
    async def test_cancel_restores_every_line(self, services, store, place_order, email_service):
        order = await place_order()
        assert store.products["PROD-KIBBLE"].stock == 8
        assert store.products["PROD-LEASH"].variations[1].stock == 1

        cancelled = await services.lifecycle.cancel_order(
            USER_ID, order.order_id, CancelReason.CHANGED_MIND.value, "Bought locally"
        )

        assert cancelled.order_status == OrderStatus.CANCELLED
        assert cancelled.payment_status == PaymentStatus.PENDING
        assert cancelled.cancel_details.reason == CancelReason.CHANGED_MIND
        assert cancelled.cancel_details.notes == "Bought locally"
        assert cancelled.cancelled_at == cancelled.cancel_details.cancelled_at
        assert cancelled.version == 2
        assert store.products["PROD-KIBBLE"].stock == 10
        assert store.products["PROD-LEASH"].variations[1].stock == 2
        assert "cancelled" in email_service.send_email.await_args.args[1]

    @pytest.mark.asyncio
    async def test_paid_order_is_marked_refunded(self, services, store, place_order):
        order = await place_order()
        await services.lifecycle.update_payment_status(order.order_id, "Paid")

        cancelled = await services.lifecycle.cancel_order(USER_ID, order.order_id, "Other")

        assert cancelled.payment_status == PaymentStatus.REFUNDED
        assert store.orders[order.order_id].payment_status == PaymentStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_shipped_order_can_be_cancelled(self, services, place_order):
        order = await place_order()
        await services.lifecycle.update_order_status(order.order_id, "Shipped")

        cancelled = await services.lifecycle.cancel_order(USER_ID, order.order_id, "Other")

        assert cancelled.order_status == OrderStatus.CANCELLED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["Delivered", "Cancelled", "Returned"])
    async def test_terminal_orders_cannot_be_cancelled(self, services, store, place_order, status):
        order = await place_order()
        await services.lifecycle.update_order_status(order.order_id, status)
        stock_before = store.products["PROD-KIBBLE"].stock

        with pytest.raises(InvalidOrderTransitionError) as exc_info:
            await services.lifecycle.cancel_order(USER_ID, order.order_id, "Other")

        assert exc_info.value.details["current_status"] == status
        assert store.products["PROD-KIBBLE"].stock == stock_before
        assert store.orders[order.order_id].order_status.value == status

    @pytest.mark.asyncio
    async def test_cancelling_twice_restores_once(self, services, store, place_order):
        order = await place_order()
        await services.lifecycle.cancel_order(USER_ID, order.order_id, "Other")

        with pytest.raises(InvalidOrderTransitionError):
            await services.lifecycle.cancel_order(USER_ID, order.order_id, "Other")

        assert store.products["PROD-KIBBLE"].stock == 10

    @pytest.mark.asyncio
    async def test_other_users_order_is_not_found(self, services, store, place_order):
        order = await place_order()

        with pytest.raises(OrderNotFoundError):
            await services.lifecycle.cancel_order(OTHER_USER_ID, order.order_id, "Other")

        assert store.orders[order.order_id].order_status == OrderStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_invalid_reason(self, services, place_order):
        order = await place_order()

        with pytest.raises(OrderValidationError) as exc_info:
            await services.lifecycle.cancel_order(USER_ID, order.order_id, "Too expensive")

        assert "Changed my mind" in exc_info.value.details["allowed"]

    @pytest.mark.asyncio
    async def test_notes_too_long(self, services, place_order):
        order = await place_order()

        with pytest.raises(OrderValidationError):
            await services.lifecycle.cancel_order(USER_ID, order.order_id, "Other", "x" * 501)

    @pytest.mark.asyncio
    async def test_stale_read_is_a_conflict(self, services, store, place_order, monkeypatch):
        """An admin update between read and write aborts the cancellation"""
        order = await place_order()
        stale = copy.deepcopy(store.orders[order.order_id])
        await services.lifecycle.update_order_status(order.order_id, "Shipped")

        async def stale_get_order(order_id):
            return copy.deepcopy(stale)

        monkeypatch.setattr(store, "get_order", stale_get_order)

        with pytest.raises(ConflictError):
            await services.lifecycle.cancel_order(USER_ID, order.order_id, "Other")

        assert store.orders[order.order_id].order_status == OrderStatus.SHIPPED
        assert store.products["PROD-KIBBLE"].stock == 8


class TestAdminTransitions:
    """Tests for update_order_status and update_payment_status"""

    @pytest.mark.asyncio
    async def test_shipped_defaults_delivery_date(self, services, place_order, email_service):
        order = await place_order()

        updated = await services.lifecycle.update_order_status(order.order_id, "Shipped")

        shipped_at = datetime.fromisoformat(updated.shipped_at)
        delivery = datetime.fromisoformat(updated.delivery_date)
        assert delivery - shipped_at == timedelta(days=3)
        assert "Status Update" in email_service.send_email.await_args.args[1]

    @pytest.mark.asyncio
    async def test_explicit_delivery_date_kept(self, services, place_order):
        order = await place_order()

        updated = await services.lifecycle.update_order_status(
            order.order_id, "Shipped", datetime(2026, 11, 1, 9, 30)
        )

        assert updated.delivery_date == "2026-11-01T09:30:00+00:00"

    @pytest.mark.asyncio
    async def test_delivered_sets_timestamp(self, services, place_order):
        order = await place_order()

        updated = await services.lifecycle.update_order_status(order.order_id, "Delivered")

        assert updated.delivered_at is not None
        assert updated.version == 2

    @pytest.mark.asyncio
    async def test_admin_cancel_does_not_restore_stock(self, services, store, place_order):
        order = await place_order()

        updated = await services.lifecycle.update_order_status(order.order_id, "Cancelled")

        assert updated.cancelled_at is not None
        assert store.products["PROD-KIBBLE"].stock == 8

    @pytest.mark.asyncio
    @pytest.mark.parametrize("closed_by", ["customer", "Returned"])
    @pytest.mark.parametrize("target", ["Processing", "Shipped", "Cancelled"])
    async def test_closed_orders_cannot_be_reopened(self, services, store, place_order, closed_by, target):
        order = await place_order()
        if closed_by == "customer":
            await services.lifecycle.cancel_order(USER_ID, order.order_id, "Other")
        else:
            await services.lifecycle.update_order_status(order.order_id, closed_by)
        closed = store.orders[order.order_id]
        stock_before = store.products["PROD-KIBBLE"].stock

        with pytest.raises(InvalidOrderTransitionError) as exc_info:
            await services.lifecycle.update_order_status(order.order_id, target)

        assert exc_info.value.details["current_status"] == closed.order_status.value
        assert store.orders[order.order_id].version == closed.version
        assert store.products["PROD-KIBBLE"].stock == stock_before

    @pytest.mark.asyncio
    async def test_reopen_then_cancel_cannot_restore_twice(self, services, store, place_order):
        order = await place_order()
        await services.lifecycle.cancel_order(USER_ID, order.order_id, "Other")

        with pytest.raises(InvalidOrderTransitionError):
            await services.lifecycle.update_order_status(order.order_id, "Processing")
        with pytest.raises(InvalidOrderTransitionError):
            await services.lifecycle.cancel_order(USER_ID, order.order_id, "Other")

        assert store.products["PROD-KIBBLE"].stock == 10

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, services, place_order):
        order = await place_order()

        with pytest.raises(OrderValidationError):
            await services.lifecycle.update_order_status(order.order_id, "Confirmed")

    @pytest.mark.asyncio
    async def test_missing_order(self, services):
        with pytest.raises(OrderNotFoundError):
            await services.lifecycle.update_order_status("missing", "Shipped")

    @pytest.mark.asyncio
    async def test_paid_sets_completion_and_confirmation(self, services, place_order, email_service):
        order = await place_order()

        updated = await services.lifecycle.update_payment_status(order.order_id, "Paid")

        assert updated.payment_status == PaymentStatus.PAID
        assert updated.payment_completed_at is not None
        assert updated.confirmed_at == updated.payment_completed_at
        assert "Payment Update" in email_service.send_email.await_args.args[1]


class TestTracking:
    """Tests for tracking number regeneration and lookup"""

    @pytest.mark.asyncio
    async def test_regenerate_reserves_new_number(self, services, store, place_order):
        order = await place_order()

        updated = await services.lifecycle.update_tracking_number(USER_ID, order.order_id)

        assert updated.tracking_number != order.tracking_number
        assert store.keys[tracking_key(updated.tracking_number)] == order.order_id
        found = await services.lifecycle.get_order_by_tracking_number(USER_ID, updated.tracking_number)
        assert found.order_id == order.order_id

    @pytest.mark.asyncio
    async def test_regenerate_requires_ownership(self, services, place_order):
        order = await place_order()

        with pytest.raises(OrderNotFoundError):
            await services.lifecycle.update_tracking_number(OTHER_USER_ID, order.order_id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tracking_number", ["abc", "abcdef123456", "ABCDEF12345!", "ABCDEF1234567"])
    async def test_invalid_format(self, services, tracking_number):
        with pytest.raises(OrderValidationError) as exc_info:
            await services.lifecycle.get_order_by_tracking_number(USER_ID, tracking_number)

        assert exc_info.value.message == "Invalid tracking number format"

    @pytest.mark.asyncio
    async def test_lookup_hides_other_users_orders(self, services, place_order):
        order = await place_order()

        with pytest.raises(OrderNotFoundError):
            await services.lifecycle.get_order_by_tracking_number(OTHER_USER_ID, order.tracking_number)


class TestReads:
    """Tests for order reads and listings"""

    @pytest.mark.asyncio
    async def test_admin_reads_any_order(self, services, place_order, admin_context):
        order = await place_order()

        found = await services.lifecycle.get_order_by_id(admin_context, order.order_id)

        assert found.order_id == order.order_id

    @pytest.mark.asyncio
    async def test_non_owner_read_is_not_found(self, services, place_order):
        order = await place_order()

        with pytest.raises(OrderNotFoundError):
            await services.lifecycle.get_order_by_id({"user_id": OTHER_USER_ID, "role": "user"}, order.order_id)

    @pytest.mark.asyncio
    async def test_my_orders_paginates_newest_first(self, services, store, place_order):
        placed = [await place_order([("PROD-KIBBLE", 1)]) for _ in range(3)]
        await place_order([("PROD-COLLAR", 1)], user_id=OTHER_USER_ID)
        for days_ago, order in zip((3, 2, 1), placed):
            store.orders[order.order_id].created_at = (
                datetime.now(timezone.utc) - timedelta(days=days_ago)
            ).isoformat()

        first = await services.lifecycle.get_my_orders(USER_ID, page=1, limit=2)
        second = await services.lifecycle.get_my_orders(USER_ID, page=2, limit=2)

        assert first.total == 3
        assert first.pages == 2
        assert first.has_next and not first.has_prev
        assert [o.order_id for o in first.orders] == [placed[2].order_id, placed[1].order_id]
        assert [o.order_id for o in second.orders] == [placed[0].order_id]

    @pytest.mark.asyncio
    async def test_status_filter(self, services, place_order):
        kept = await place_order([("PROD-KIBBLE", 1)])
        shipped = await place_order([("PROD-KIBBLE", 1)])
        await services.lifecycle.update_order_status(shipped.order_id, "Shipped")

        page = await services.lifecycle.get_my_orders(USER_ID, status="Processing")

        assert [o.order_id for o in page.orders] == [kept.order_id]

    @pytest.mark.asyncio
    async def test_invalid_status_filter(self, services):
        with pytest.raises(OrderValidationError):
            await services.lifecycle.get_my_orders(USER_ID, status="Lost")

    @pytest.mark.asyncio
    async def test_date_filter_includes_whole_days(self, services, store, place_order):
        in_range = await place_order([("PROD-KIBBLE", 1)])
        out_of_range = await place_order([("PROD-KIBBLE", 1)])
        store.orders[in_range.order_id].created_at = "2026-10-05T23:59:00+00:00"
        store.orders[out_of_range.order_id].created_at = "2026-10-06T00:00:01+00:00"

        page = await services.lifecycle.get_my_orders(
            USER_ID, start_date=date(2026, 10, 1), end_date=date(2026, 10, 5)
        )

        assert [o.order_id for o in page.orders] == [in_range.order_id]

    @pytest.mark.asyncio
    async def test_start_after_end_rejected(self, services):
        with pytest.raises(OrderValidationError):
            await services.lifecycle.get_my_orders(
                USER_ID, start_date=date(2026, 10, 5), end_date=date(2026, 10, 1)
            )

    @pytest.mark.asyncio
    async def test_admin_listing_filters_by_user(self, services, place_order):
        await place_order([("PROD-KIBBLE", 1)])
        other = await place_order([("PROD-COLLAR", 1)], user_id=OTHER_USER_ID)

        everything = await services.lifecycle.get_all_orders()
        theirs = await services.lifecycle.get_all_orders(user_id=OTHER_USER_ID)

        assert everything.total == 2
        assert [o.order_id for o in theirs.orders] == [other.order_id]
