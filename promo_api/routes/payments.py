# promo_api/routes/payments.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.logging import get_structlog_logger
from promo_api.db.session import get_session
from promo_api.routes.promotions import get_pricing
from promo_api.schemas.payment import CheckoutRequest, CheckoutResponse, PaymentAck
from promo_api.services.payments import (
    build_payhere_checkout,
    handle_card_webhook,
    handle_payhere_notification,
)
from promo_api.services.pricing import PricingTable

logger = get_structlog_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/payhere/checkout", response_model=CheckoutResponse)
async def create_payhere_checkout(
    payload: CheckoutRequest,
    pricing: PricingTable = Depends(get_pricing),
) -> CheckoutResponse:
    checkout = build_payhere_checkout(
        payload.listing_id,
        payload.promotion_types,
        payload.customer_name,
        payload.customer_email,
        payload.customer_phone,
        pricing=pricing,
    )
    return CheckoutResponse(action=checkout["action"], total=float(checkout["total"]), fields=checkout["fields"])


@router.post("/payhere/notify", response_model=PaymentAck)
async def payhere_notify(
    request: Request,
    session: AsyncSession = Depends(get_session),
    pricing: PricingTable = Depends(get_pricing),
) -> PaymentAck:
    """PayHere server-to-server callback (form encoded)."""
    form = await request.form()
    data = {key: str(value) for key, value in form.items()}
    logger.info("payments.payhere.received", order_id=data.get("order_id"), status_code=data.get("status_code"))

    result = await handle_payhere_notification(session, data, pricing=pricing)
    if result is None:
        return PaymentAck(status="ignored", activated=False)
    return PaymentAck(status="ok", activated=True, replayed=result.replayed, listing_id=result.listing_id)


@router.post("/webhook", response_model=PaymentAck)
async def card_webhook(
    request: Request,
    x_payment_signature: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_session),
    pricing: PricingTable = Depends(get_pricing),
) -> PaymentAck:
    body = await request.body()
    result = await handle_card_webhook(session, body, x_payment_signature, pricing=pricing)
    if result is None:
        return PaymentAck(status="ignored", activated=False)
    return PaymentAck(status="ok", activated=True, replayed=result.replayed, listing_id=result.listing_id)
