# promo_api/services/payments.py
from __future__ import annotations

import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from promo_api.core.config import settings
from promo_api.core.exceptions import PaymentVerificationError
from promo_api.core.logging import get_structlog_logger
from promo_api.services.activation import BundleActivationResult, activate_bundle
from promo_api.services.pricing import PricingTable, quote_bundle

logger = get_structlog_logger()

PAYHERE_SUCCESS = "2"
PAYHERE_CHECKOUT_URL = "https://www.payhere.lk/pay/checkout"
PAYHERE_SANDBOX_CHECKOUT_URL = "https://sandbox.payhere.lk/pay/checkout"
CARD_SUCCESS_EVENT = "payment_intent.succeeded"


def _md5_upper(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()


def format_amount(amount: Decimal) -> str:
    return f"{Decimal(amount):.2f}"


def payhere_hash(
    merchant_id: str,
    order_id: str,
    amount: str,
    currency: str,
    merchant_secret: str,
    status_code: str = "",
) -> str:
    """UPPER(MD5(merchant_id + order_id + amount + currency [+ status_code] + UPPER(MD5(secret))))."""
    return _md5_upper(f"{merchant_id}{order_id}{amount}{currency}{status_code}{_md5_upper(merchant_secret)}")


@dataclass(frozen=True)
class PayHereNotification:
    merchant_id: str
    order_id: str
    amount: str
    currency: str
    status_code: str
    listing_id: int
    promotion_types: tuple

    @property
    def succeeded(self) -> bool:
        return self.status_code == PAYHERE_SUCCESS


def verify_payhere_notification(
    data: Mapping[str, str],
    merchant_id: Optional[str] = None,
    merchant_secret: Optional[str] = None,
) -> PayHereNotification:
    """Check the md5sig of a PayHere notify callback and parse our custom fields."""
    merchant_id = settings.payhere_merchant_id if merchant_id is None else merchant_id
    merchant_secret = settings.payhere_merchant_secret if merchant_secret is None else merchant_secret
    if not merchant_secret:
        raise PaymentVerificationError(
            message="PayHere merchant secret is not configured",
            code="PAYHERE_NOT_CONFIGURED",
        )

    required = ("merchant_id", "order_id", "payhere_amount", "payhere_currency", "status_code", "md5sig")
    missing = [key for key in required if not data.get(key)]
    if missing:
        raise PaymentVerificationError(
            message="Incomplete PayHere notification",
            code="PAYHERE_INCOMPLETE",
            details={"missing": missing},
        )

    if merchant_id and data["merchant_id"] != merchant_id:
        raise PaymentVerificationError(
            message="Notification is for a different merchant",
            code="PAYHERE_MERCHANT_MISMATCH",
        )

    expected = payhere_hash(
        data["merchant_id"],
        data["order_id"],
        data["payhere_amount"],
        data["payhere_currency"],
        merchant_secret,
        status_code=data["status_code"],
    )
    if not hmac.compare_digest(expected, data["md5sig"].upper()):
        raise PaymentVerificationError(
            message="PayHere signature mismatch",
            code="PAYHERE_BAD_SIGNATURE",
            details={"order_id": data["order_id"]},
        )

    try:
        listing_id = int(data.get("custom_1", ""))
    except ValueError as e:
        raise PaymentVerificationError(
            message="Notification carries no listing id",
            code="PAYHERE_BAD_LISTING",
        ) from e

    return PayHereNotification(
        merchant_id=data["merchant_id"],
        order_id=data["order_id"],
        amount=data["payhere_amount"],
        currency=data["payhere_currency"],
        status_code=data["status_code"],
        listing_id=listing_id,
        promotion_types=tuple(t for t in data.get("custom_2", "").split(",") if t.strip()),
    )


def _check_amount(paid: Decimal, promotion_types: Iterable[str], pricing: Optional[PricingTable], reference: str) -> None:
    quote = quote_bundle(promotion_types, pricing)
    if paid != quote.total:
        logger.warning(
            "payments.amount_mismatch",
            payment_reference=reference,
            paid=str(paid),
            expected=str(quote.total),
        )
        raise PaymentVerificationError(
            message="Paid amount does not match the bundle price",
            code="PAYMENT_AMOUNT_MISMATCH",
            details={"paid": str(paid), "expected": str(quote.total)},
        )


async def handle_payhere_notification(
    session: AsyncSession,
    data: Mapping[str, str],
    pricing: Optional[PricingTable] = None,
    now: Optional[datetime] = None,
) -> Optional[BundleActivationResult]:
    """
    Verify a PayHere callback and activate the bundle it paid for.

    Returns None for non-success statuses; nothing is written in that case.
    """
    notification = verify_payhere_notification(data)

    if not notification.succeeded:
        logger.info(
            "payments.payhere.not_successful",
            order_id=notification.order_id,
            status_code=notification.status_code,
        )
        return None

    try:
        paid = Decimal(notification.amount)
    except InvalidOperation as e:
        raise PaymentVerificationError(message="Malformed amount", code="PAYMENT_BAD_AMOUNT") from e

    _check_amount(paid, notification.promotion_types, pricing, notification.order_id)

    result = await activate_bundle(
        session,
        notification.listing_id,
        notification.promotion_types,
        notification.order_id,
        now=now,
        pricing=pricing,
        provider="payhere",
    )
    logger.info(
        "payments.payhere.activated",
        order_id=notification.order_id,
        listing_id=notification.listing_id,
        replayed=result.replayed,
    )
    return result


def build_payhere_checkout(
    listing_id: int,
    promotion_types: Iterable[str],
    customer_name: str,
    customer_email: str,
    customer_phone: str,
    order_id: Optional[str] = None,
    pricing: Optional[PricingTable] = None,
) -> Dict[str, Any]:
    """Hidden form fields for a PayHere checkout redirect."""
    quote = quote_bundle(promotion_types, pricing)
    order_id = order_id or f"PROMO-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
    amount = format_amount(quote.total)
    base_url = settings.app_base_url.rstrip("/")
    first_name, _, last_name = customer_name.strip().partition(" ")
    types = ",".join(t.value for t in quote.promotion_types)

    fields = {
        "merchant_id": settings.payhere_merchant_id,
        "return_url": f"{base_url}/payment/success",
        "cancel_url": f"{base_url}/payment/cancel",
        "notify_url": f"{base_url}{settings.api_prefix}/payments/payhere/notify",
        "order_id": order_id,
        "items": f"Listing promotion - {', '.join(t.value for t in quote.promotion_types)}",
        "currency": quote.currency,
        "amount": amount,
        "first_name": first_name,
        "last_name": last_name,
        "email": customer_email,
        "phone": customer_phone,
        "custom_1": str(listing_id),
        "custom_2": types,
    }
    fields["hash"] = payhere_hash(
        fields["merchant_id"],
        order_id,
        amount,
        quote.currency,
        settings.payhere_merchant_secret,
    )

    return {
        "action": PAYHERE_SANDBOX_CHECKOUT_URL if settings.payhere_sandbox else PAYHERE_CHECKOUT_URL,
        "fields": fields,
        "total": quote.total,
    }


class CardWebhookVerifier:
    """HMAC-SHA256 signatures over the raw webhook body."""

    @staticmethod
    def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
        if not signature or not secret:
            return False

        if signature.startswith("sha256="):
            signature = signature[7:]

        expected_signature = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(signature, expected_signature)

    @staticmethod
    def generate_signature(payload: bytes, secret: str) -> str:
        signature = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        return f"sha256={signature}"


async def handle_card_webhook(
    session: AsyncSession,
    payload: bytes,
    signature: Optional[str],
    secret: Optional[str] = None,
    pricing: Optional[PricingTable] = None,
    now: Optional[datetime] = None,
) -> Optional[BundleActivationResult]:
    """
    Verify a card-processor event and activate the bundle on a succeeded intent.

    Other event types are acknowledged and ignored.
    """
    secret = settings.card_webhook_secret if secret is None else secret
    if not CardWebhookVerifier.verify_signature(payload, signature or "", secret):
        raise PaymentVerificationError(message="Invalid webhook signature", code="CARD_BAD_SIGNATURE")

    try:
        event = json.loads(payload)
        event_type = event["type"]
        intent = event["data"]["object"]
    except (ValueError, KeyError, TypeError) as e:
        raise PaymentVerificationError(message="Malformed webhook payload", code="CARD_BAD_PAYLOAD") from e

    if event_type != CARD_SUCCESS_EVENT:
        logger.info("payments.card.ignored", event_type=event_type, intent_id=intent.get("id"))
        return None

    metadata = intent.get("metadata") or {}
    try:
        reference = str(intent["id"])
        listing_id = int(metadata["listing_id"])
        promotion_types = [t for t in str(metadata["promotion_types"]).split(",") if t.strip()]
    except (KeyError, TypeError, ValueError) as e:
        raise PaymentVerificationError(
            message="Payment intent is missing promotion metadata",
            code="CARD_BAD_METADATA",
        ) from e

    # Card processors report minor units
    received = intent.get("amount_received", intent.get("amount"))
    try:
        paid = Decimal(int(received)) / 100
    except (TypeError, ValueError) as e:
        raise PaymentVerificationError(
            message="Payment intent carries no usable amount",
            code="CARD_BAD_AMOUNT",
            details={"intent_id": reference},
        ) from e
    _check_amount(paid, promotion_types, pricing, reference)

    result = await activate_bundle(
        session,
        listing_id,
        promotion_types,
        reference,
        now=now,
        pricing=pricing,
        provider="card",
    )
    logger.info(
        "payments.card.activated",
        intent_id=reference,
        listing_id=listing_id,
        replayed=result.replayed,
    )
    return result
