"""
Centralized Exception Handling for PawMart

This module provides:
- Custom exception classes for checkout, payment and order errors
- Standardized error response format
- Exception handlers for FastAPI
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

__all__ = [
    # Base exception
    "PawMartException",
    # Generic
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "DatabaseError",
    # Order-related
    "OrderValidationError",
    "OrderNotFoundError",
    "OutOfStockError",
    "InvalidOrderTransitionError",
    # Payment-related
    "PaymentError",
    "GatewayUnavailableError",
    "PaymentInitiationError",
    "PaymentVerificationError",
    "IdempotencyViolation",
    # Response helpers
    "create_error_response",
    "pawmart_exception_handler",
    "request_validation_exception_handler",
    "unhandled_exception_handler",
]


class PawMartException(Exception):
    """Base exception for PawMart application"""

    def __init__(self, message: str, error_code: str = "INTERNAL_ERROR",
                 details: Dict[str, Any] = None, status_code: int = 500):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(PawMartException):
    """Data validation error"""

    def __init__(self, message: str = "Validation failed", details: Dict[str, Any] = None):
        super().__init__(message, "VALIDATION_ERROR", details, 400)


class NotFoundError(PawMartException):
    """Resource not found error"""

    def __init__(self, message: str = "Resource not found", details: Dict[str, Any] = None):
        super().__init__(message, "NOT_FOUND", details, 404)


class ConflictError(PawMartException):
    """Concurrent modification or uniqueness collision; the caller may retry"""

    def __init__(self, message: str = "Conflicting update, please retry", details: Dict[str, Any] = None):
        super().__init__(message, "CONFLICT", details, 409)


class DatabaseError(PawMartException):
    """Database operation error"""

    def __init__(self, message: str = "Database operation failed", details: Dict[str, Any] = None):
        super().__init__(message, "DATABASE_ERROR", details, 500)


class OrderValidationError(ValidationError):
    """Checkout or order update input failed validation"""


class OrderNotFoundError(NotFoundError):

    def __init__(self, order_id: str, details: Dict[str, Any] = None):
        super().__init__("Order not found", {**(details or {}), "order_id": order_id})


class OutOfStockError(PawMartException):
    """
    One or more cart lines cannot be satisfied.

    Always carries the complete list of failing lines, never only the first.
    """

    def __init__(self, items: List[Dict[str, Any]], message: str = "Some items are out of stock"):
        self.items = items
        super().__init__(message, "OUT_OF_STOCK", {"out_of_stock_items": items}, 400)


class InvalidOrderTransitionError(PawMartException):
    """Requested transition is not allowed from the order's current state"""

    def __init__(self, message: str, current_status: str, details: Dict[str, Any] = None):
        super().__init__(
            message,
            "INVALID_ORDER_TRANSITION",
            {**(details or {}), "current_status": current_status},
            400
        )


class PaymentError(PawMartException):
    """Payment-related errors"""

    def __init__(self, message: str = "Payment operation failed", error_code: str = "PAYMENT_ERROR",
                 details: Dict[str, Any] = None, status_code: int = 400):
        super().__init__(message, error_code, details, status_code)


class GatewayUnavailableError(PaymentError):
    """Payment gateway timed out or could not be reached"""

    def __init__(self, message: str = "Payment gateway is unavailable, please try again",
                 details: Dict[str, Any] = None):
        super().__init__(message, "GATEWAY_UNAVAILABLE", details, 502)


class PaymentInitiationError(PaymentError):
    """Gateway answered but refused to open a payment session"""

    def __init__(self, reason: str, details: Dict[str, Any] = None):
        self.reason = reason
        super().__init__(
            f"Payment initiation failed: {reason}",
            "PAYMENT_INITIATION_FAILED",
            {**(details or {}), "reason": reason},
            400
        )


class PaymentVerificationError(PaymentError):
    """
    Callback signature or echoed payload did not verify.

    Never rendered as an API error: the callback endpoint turns it into a
    redirect to the generic failure page.
    """

    def __init__(self, message: str = "Payment verification failed", details: Dict[str, Any] = None):
        super().__init__(message, "PAYMENT_VERIFICATION_FAILED", details, 400)


class IdempotencyViolation(PaymentError):
    """Callback refers to a transaction that is unknown or already resolved"""

    def __init__(self, txnid: str, message: str = "Order already processed", details: Dict[str, Any] = None):
        super().__init__(message, "IDEMPOTENCY_VIOLATION", {**(details or {}), "txnid": txnid}, 409)


def _error_body(code: str, message: str, details: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def create_error_response(error: PawMartException, status_code: Optional[int] = None) -> JSONResponse:
    """Create standardized error response"""

    if status_code is None:
        status_code = error.status_code

    log = logger.error if status_code >= 500 else logger.warning
    log(f"PawMart Error: {error.error_code} - {error.message}", extra={
        "error_code": error.error_code,
        "status_code": status_code,
        "details": error.details,
    })

    return JSONResponse(
        status_code=status_code,
        content=_error_body(error.error_code, error.message, error.details),
    )


async def pawmart_exception_handler(request: Request, exc: PawMartException) -> JSONResponse:
    """Global exception handler for PawMart exceptions"""
    return create_error_response(exc)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies and query parameters in the standard envelope"""
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg"),
        }
        for error in exc.errors()
    ]
    logger.warning(f"Request validation failed for {request.method} {request.url.path}: {errors}")
    return JSONResponse(
        status_code=400,
        content=_error_body("VALIDATION_ERROR", "Validation failed", {"errors": errors}),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=_error_body("INTERNAL_ERROR", "Internal server error", {}),
    )
