"""Razorpay orders and webhook: captured payments confirm purchases (idempotent)."""

import json

from beanie import PydanticObjectId
from bson.errors import InvalidId

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, PurchaseMismatchError
from app.core.logging import get_logger
from app.core.security import verify_razorpay_payment, verify_razorpay_webhook
from app.models.purchase import Purchase
from app.services import purchases as purchases_service

log = get_logger(__name__)


def payments_configured() -> bool:
    settings = get_settings()
    return bool(settings.razorpay_key_id and settings.razorpay_key_secret)


async def create_order(purchase: Purchase) -> dict:
    """Create Razorpay order for a pending purchase; return order details for the frontend checkout."""
    import razorpay
    settings = get_settings()
    if not payments_configured():
        raise BadRequestError("Payments not configured")
    client = razorpay.Client(auth=(settings.razorpay_key_id, settings.razorpay_key_secret))
    order = client.order.create(
        {
            "amount": purchase.amount_paise,
            "currency": purchase.currency,
            "receipt": f"purchase_{purchase.id}",
            "notes": {"purchase_id": str(purchase.id), "course_id": str(purchase.course_id)},
        }
    )
    purchase.gateway_order_id = order["id"]
    await purchase.save()
    return {
        "order_id": order["id"],
        "amount": order["amount"],
        "currency": order["currency"],
        "key_id": settings.razorpay_key_id,
    }


def verify_checkout(purchase: Purchase, order_id: str, payment_id: str, signature: str) -> None:
    """Buyer-side confirmation: the signed order must be the one created for this purchase."""
    settings = get_settings()
    if not settings.razorpay_key_secret:
        raise BadRequestError("Payments not configured")
    if not purchase.gateway_order_id or order_id != purchase.gateway_order_id:
        raise PurchaseMismatchError(details={"order_id": order_id})
    if not verify_razorpay_payment(order_id, payment_id, signature, settings.razorpay_key_secret):
        log.warning("checkout_signature_invalid", purchase_id=str(purchase.id), order_id=order_id)
        raise BadRequestError("Invalid payment signature")


def _notes_course_id(payment: dict) -> PydanticObjectId | None:
    raw = (payment.get("notes") or {}).get("course_id")
    if not raw:
        return None
    try:
        return PydanticObjectId(raw)
    except (InvalidId, TypeError):
        raise PurchaseMismatchError(details={"course_id": raw})


async def handle_webhook(payload: bytes, signature: str) -> None:
    """Verify HMAC; payment.captured -> confirm purchase, payment.failed -> fail it."""
    settings = get_settings()
    if not settings.razorpay_webhook_secret:
        raise BadRequestError("Webhook secret not configured")
    if not verify_razorpay_webhook(payload, signature, settings.razorpay_webhook_secret):
        raise BadRequestError("Invalid webhook signature")
    data = json.loads(payload.decode())
    event = data.get("event")
    if event not in ("payment.captured", "payment.failed"):
        return
    payment = data.get("payload", {}).get("payment", {}).get("entity", {})
    order_id = payment.get("order_id")
    purchase = await Purchase.find_one(Purchase.gateway_order_id == order_id)
    if not purchase:
        log.warning("webhook_purchase_not_found", order_id=order_id, event=event)
        return
    if event == "payment.failed":
        await purchases_service.fail_purchase(purchase.id, payment.get("error_description") or "payment failed")
        return
    await purchases_service.confirm_purchase(
        purchase.id,
        gateway_payment_id=payment.get("id"),
        amount_paise=payment.get("amount"),
        course_id=_notes_course_id(payment),
    )
