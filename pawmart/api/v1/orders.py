"""
FastAPI REST endpoints for PawMart orders

Authentication:
- Checkout, own-order reads, cancellation and tracking regeneration
  require a customer token
- Order listing across users and status/payment updates require an admin token
- Single-order reads admit the owner or an admin
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from pawmart.api.deps import get_checkout_service, get_lifecycle_service
from pawmart.core.security import get_current_admin, get_current_user
from pawmart.models.order import CANCEL_NOTES_MAX_LENGTH, ShippingAddress
from pawmart.services.checkout_service import CheckoutRequest, CheckoutService
from pawmart.services.order_lifecycle import OrderLifecycleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

# =============================================================================
# PYDANTIC MODELS
# =============================================================================


class ShippingAddressIn(BaseModel):
    """Delivery address supplied at checkout"""
    full_name: str = Field(..., min_length=1, max_length=200)
    address_line1: str = Field(..., min_length=1, max_length=300)
    address_line2: Optional[str] = Field(None, max_length=300)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    phone: Optional[str] = Field(None, max_length=20)
    country: str = Field("India", max_length=100)

    @field_validator("full_name", "address_line1", "city", "state", "postal_code")
    @classmethod
    def strip_required(cls, v):
        if not v.strip():
            raise ValueError("Field cannot be blank")
        return v.strip()

    def to_domain(self) -> ShippingAddress:
        return ShippingAddress(**self.model_dump())


class CreateOrderRequest(BaseModel):
    """Request model for checkout"""
    shipping_address: ShippingAddressIn
    payment_method: str = Field(..., description="COD or ONLINE")
    coupon_code: Optional[str] = Field(None, max_length=50, description="Recorded on the order, not priced")
    notes: Optional[str] = Field(None, max_length=1000)


class UpdateStatusRequest(BaseModel):
    """Admin order status update; accepts the storefront's orderStatus/deliveryDate keys too"""
    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(
        ..., alias="orderStatus", description="Processing, Shipped, Delivered, Cancelled or Returned"
    )
    delivery_date: Optional[datetime] = Field(
        None, alias="deliveryDate", description="Defaults to three days out when shipping"
    )


class UpdatePaymentStatusRequest(BaseModel):
    """Admin payment status update"""
    payment_status: str = Field(..., description="Pending, Initiated, Paid, Failed or Refunded")


class CancelOrderRequest(BaseModel):
    """Customer cancellation"""
    reason: str = Field(..., description="One of the fixed cancellation reasons")
    notes: Optional[str] = Field(None, max_length=CANCEL_NOTES_MAX_LENGTH)


def _ok(data: Any, message: str) -> Dict[str, Any]:
    return {"success": True, "data": data, "message": message}


# =============================================================================
# CUSTOMER ENDPOINTS
# =============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CreateOrderRequest,
    current_user: dict = Depends(get_current_user),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """
    Create an order from the caller's cart.

    COD: the order is created immediately (201).
    ONLINE: stock is reserved and a gateway payment URL is returned (200);
    the order is created when the payment callback arrives.
    """
    result = await checkout.create_order(
        current_user,
        CheckoutRequest(
            shipping_address=request.shipping_address.to_domain(),
            payment_method=request.payment_method,
            coupon_code=request.coupon_code,
            notes=request.notes,
        ),
    )
    message = "Order created successfully" if result.order else "Payment initiated"
    return JSONResponse(status_code=result.status_code, content=_ok(result.to_dict(), message))


@router.get("/me")
async def get_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    order_status: Optional[str] = Query(None, alias="status"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_user: dict = Depends(get_current_user),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle_service),
):
    result = await lifecycle.get_my_orders(
        current_user["user_id"],
        page=page,
        limit=limit,
        status=order_status,
        start_date=start_date,
        end_date=end_date,
    )
    return _ok(result.to_dict(), "Orders retrieved successfully")


@router.get("/tracking/{tracking_number}")
async def get_order_by_tracking_number(
    tracking_number: str,
    current_user: dict = Depends(get_current_user),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle_service),
):
    order = await lifecycle.get_order_by_tracking_number(current_user["user_id"], tracking_number)
    return _ok(order.to_dict(), "Order retrieved successfully")


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================


@router.get("")
async def get_all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    order_status: Optional[str] = Query(None, alias="status"),
    user_id: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current_admin: dict = Depends(get_current_admin),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle_service),
):
    result = await lifecycle.get_all_orders(
        page=page,
        limit=limit,
        status=order_status,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
    )
    return _ok(result.to_dict(), "Orders retrieved successfully")


@router.patch("/status/{order_id}")
async def update_order_status(
    order_id: str,
    request: UpdateStatusRequest,
    current_admin: dict = Depends(get_current_admin),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle_service),
):
    order = await lifecycle.update_order_status(order_id, request.status, request.delivery_date)
    logger.info(f"Admin {current_admin['user_id']} set order {order_id} to {request.status}")
    return _ok(order.to_dict(), "Order status updated successfully")


@router.patch("/payment-status/{order_id}")
async def update_payment_status(
    order_id: str,
    request: UpdatePaymentStatusRequest,
    current_admin: dict = Depends(get_current_admin),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle_service),
):
    order = await lifecycle.update_payment_status(order_id, request.payment_status)
    logger.info(f"Admin {current_admin['user_id']} set payment of order {order_id} to {request.payment_status}")
    return _ok(order.to_dict(), "Payment status updated successfully")


# =============================================================================
# SINGLE ORDER ENDPOINTS
# =============================================================================


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    current_user: dict = Depends(get_current_user),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle_service),
):
    order = await lifecycle.get_order_by_id(current_user, order_id)
    return _ok(order.to_dict(), "Order retrieved successfully")


@router.patch("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    request: CancelOrderRequest,
    current_user: dict = Depends(get_current_user),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle_service),
):
    order = await lifecycle.cancel_order(current_user["user_id"], order_id, request.reason, request.notes)
    return _ok(order.to_dict(), "Order cancelled successfully")


@router.patch("/{order_id}/tracking")
async def update_tracking_number(
    order_id: str,
    current_user: dict = Depends(get_current_user),
    lifecycle: OrderLifecycleService = Depends(get_lifecycle_service),
):
    order = await lifecycle.update_tracking_number(current_user["user_id"], order_id)
    return _ok(order.to_dict(), "Tracking number updated successfully")
