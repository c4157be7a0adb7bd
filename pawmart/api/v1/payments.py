"""
Payment gateway callback and checkout housekeeping

The callback is unauthenticated: the gateway posts the payment result here
(surl/furl) and the signature is the only proof of origin. Every callback
outcome is a redirect to the storefront, never a JSON body.

Releasing expired checkouts is admin-only and meant for a scheduler.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from pawmart.api.deps import get_payment_service
from pawmart.core.security import get_current_admin
from pawmart.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payments"])


async def _handle(data: dict, payments: PaymentService, status_code: int) -> RedirectResponse:
    result = await payments.handle_callback(data)
    logger.info(
        f"Payment callback for {data.get('txnid')} -> "
        f"{'success' if result.success else 'failure'}: {result.message}"
    )
    return RedirectResponse(url=result.redirect_url, status_code=status_code)


@router.post("/callback")
async def payment_callback(request: Request, payments: PaymentService = Depends(get_payment_service)):
    form = await request.form()
    data = {key: str(value) for key, value in form.items()}
    return await _handle(data, payments, 303)


@router.get("/callback")
async def payment_callback_redirect(request: Request, payments: PaymentService = Depends(get_payment_service)):
    return await _handle(dict(request.query_params), payments, 302)


@router.post("/release-expired")
async def release_expired_checkouts(
    current_admin: dict = Depends(get_current_admin),
    payments: PaymentService = Depends(get_payment_service),
):
    """Return stock held by checkouts whose payment callback never arrived."""
    released = await payments.release_expired_checkouts()
    logger.info(f"Admin {current_admin['user_id']} released {released} expired checkouts")
    return {"success": True, "data": {"released": released}, "message": "Expired checkouts released"}
