"""Checkout and payment confirmation for course purchases."""

from datetime import datetime

from beanie import PydanticObjectId, UpdateResponse

from app.core.exceptions import BadRequestError, ConflictError, NotFoundError, PurchaseMismatchError
from app.core.logging import get_logger
from app.models.course import Course
from app.models.purchase import Purchase
from app.models.referral import Referral
from app.services.commission_grants import grant_commission
from app.services.notifications import notify
from app.services.referral_codes import normalize_code, resolve_referral_code

log = get_logger(__name__)


async def start_purchase(
    buyer_id: PydanticObjectId,
    course_id: PydanticObjectId,
    referral_code: str | None = None,
) -> tuple[Purchase, dict]:
    """Create a pending purchase at course price. A bad referral code never blocks checkout.

    Returns (purchase, referral info for the client).
    """
    course = await Course.get(course_id)
    if not course or not course.is_active:
        raise NotFoundError("Course not found")
    already = await Purchase.find_one(
        Purchase.buyer_id == buyer_id,
        Purchase.course_id == course.id,
        Purchase.payment_status == "completed",
    )
    if already:
        raise BadRequestError("Course already purchased")

    code = normalize_code(referral_code)
    resolution = await resolve_referral_code(code, course, buyer_id)
    purchase = Purchase(
        buyer_id=buyer_id,
        course_id=course.id,
        amount_paise=course.price_paise,
        used_referral_code=code or None,
        has_used_referral_code=bool(code),
    )
    await purchase.insert()
    log.info(
        "purchase_started",
        purchase_id=str(purchase.id),
        buyer_id=str(buyer_id),
        course_id=str(course.id),
        referral=resolution.kind.value,
    )
    return purchase, {"code": code or None, "kind": resolution.kind.value, "applied": resolution.has_referrer}


async def confirm_purchase(
    purchase_id: PydanticObjectId,
    gateway_payment_id: str,
    amount_paise: int,
    course_id: PydanticObjectId | None = None,
) -> tuple[Purchase, Referral | None]:
    """Payment confirmed by the gateway: pending -> completed once, then grant commission.

    Callers pass what the gateway reports as paid; it must match the stored purchase.
    A repeated confirmation leaves the purchase as it is; the grant is re-run and is a no-op.
    """
    purchase = await Purchase.get(purchase_id)
    if not purchase:
        raise NotFoundError("Purchase not found")
    if amount_paise != purchase.amount_paise:
        raise PurchaseMismatchError(details={"expected_amount": purchase.amount_paise, "amount": amount_paise})
    if course_id is not None and course_id != purchase.course_id:
        raise PurchaseMismatchError(details={"expected_course_id": str(purchase.course_id), "course_id": str(course_id)})
    if purchase.payment_status == "failed":
        raise ConflictError("Purchase already failed", details={"status": purchase.payment_status})

    completed = await Purchase.find_one({"_id": purchase.id, "payment_status": "pending"}).update(
        {
            "$set": {
                "payment_status": "completed",
                "gateway_payment_id": gateway_payment_id,
                "completed_at": datetime.utcnow(),
            }
        },
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if completed is not None:
        purchase = completed
        log.info("purchase_completed", purchase_id=str(purchase.id), gateway_payment_id=gateway_payment_id)
        course = await Course.get(purchase.course_id)
        await notify(
            purchase.buyer_id,
            "Course Purchased Successfully!",
            f"You have successfully purchased \"{course.title if course else 'your course'}\". You can now access the course content.",
            type="success",
            action_url=f"/courses/{purchase.course_id}/content",
        )
    else:
        purchase = await Purchase.get(purchase_id)
        if purchase.payment_status != "completed":
            raise ConflictError("Purchase already failed", details={"status": purchase.payment_status})
        log.info("purchase_confirm_repeat", purchase_id=str(purchase.id), gateway_payment_id=gateway_payment_id)

    referral = await grant_commission(purchase.id)
    return purchase, referral


async def fail_purchase(purchase_id: PydanticObjectId, reason: str = "") -> Purchase:
    """pending -> failed. A completed purchase is left untouched."""
    updated = await Purchase.find_one({"_id": purchase_id, "payment_status": "pending"}).update(
        {"$set": {"payment_status": "failed", "failure_reason": reason[:500]}},
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        purchase = await Purchase.get(purchase_id)
        if not purchase:
            raise NotFoundError("Purchase not found")
        return purchase
    log.info("purchase_failed", purchase_id=str(purchase_id), reason=reason)
    return updated


async def list_purchases(buyer_id: PydanticObjectId) -> list[Purchase]:
    return await Purchase.find(Purchase.buyer_id == buyer_id).sort(-Purchase.created_at).to_list()


def serialize_purchase(p: Purchase) -> dict:
    return {
        "id": str(p.id),
        "course_id": str(p.course_id),
        "amount": p.amount_paise,
        "currency": p.currency,
        "payment_status": p.payment_status,
        "used_referral_code": p.used_referral_code,
        "created_at": p.created_at.isoformat(),
        "completed_at": p.completed_at.isoformat() if p.completed_at else None,
    }
