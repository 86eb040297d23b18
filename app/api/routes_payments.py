"""
Payment proxy consumed by browser checkouts.

Contract: 200 on success; 400 for a missing parameter; 405 for a wrong
method; 500 for upstream or configuration failures. Every error body is
`{"error": "<message>"}` (see the exception handler in app.main).
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from app.core.config import get_settings
from app.core.errors import PaymentError
from app.core.logger import get_logger
from app.schemas.payment import PaymentMethod
from app.services.stripe_client import get_stripe_client

router = APIRouter()
log = get_logger(__name__)


class CreateIntentRequest(BaseModel):
    amount: Optional[float] = None
    method: PaymentMethod = PaymentMethod.PIX


@router.post("/create-payment-intent")
async def create_payment_intent(body: Optional[CreateIntentRequest] = None):
    """Create a PaymentIntent; `amount` is in major units (e.g. 10.00 BRL)."""
    if body is None or body.amount is None:
        raise HTTPException(status_code=400, detail="Missing amount")
    if body.amount <= 0:
        raise HTTPException(status_code=400, detail="Amount must be positive")
    try:
        intent = await get_stripe_client().create_payment_intent(body.amount, body.method)
    except PaymentError as e:
        raise HTTPException(status_code=500, detail=e.detail)
    return {
        "id": intent.id,
        "client_secret": intent.client_secret,
        "status": intent.status.value,
        "next_action": intent.next_action.model_dump(mode="json") if intent.next_action else None,
    }


@router.get("/check-status")
async def check_status(id: Optional[str] = Query(None)):
    if not id:
        raise HTTPException(status_code=400, detail="Missing PaymentIntent ID")
    try:
        status = await get_stripe_client().get_payment_status(id)
    except PaymentError as e:
        raise HTTPException(status_code=500, detail=e.detail)
    return {"status": status.value}


@router.get("/config")
def client_config():
    """Public checkout configuration. Never includes server-side secrets."""
    settings = get_settings()
    if not settings.STRIPE_PUBLISHABLE_KEY:
        log.error("STRIPE_PUBLISHABLE_KEY is not configured")
        raise HTTPException(status_code=500, detail="Payment configuration missing")
    return {
        "publishable_key": settings.STRIPE_PUBLISHABLE_KEY,
        "price": settings.ANALYSIS_PRICE,
        "currency": settings.CURRENCY,
    }
