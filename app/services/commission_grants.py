"""Exactly-once referral commission for completed purchases.

The unique index on Referral.purchase_id is the idempotency key: a duplicate
grant for the same purchase fails at insert. A Referral is written as pending
with the id of its wallet credit, the credit is applied, then the Referral is
marked completed. Pending referrals older than the reconcile grace period are
finished by complete_pending_referral.
"""

from datetime import datetime

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from app.core.audit import log_event
from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.models.course import Course
from app.models.purchase import Purchase
from app.models.referral import Referral
from app.services import ledger
from app.services.commission import calculate_commission
from app.services.notifications import format_inr, notify
from app.services.referral_codes import ResolutionKind, resolve_referral_code

log = get_logger(__name__)


async def grant_commission(purchase_id: PydanticObjectId) -> Referral | None:
    """Grant the referrer's commission for a completed purchase. Safe to call any number of times.

    Returns the purchase's Referral, or None when no commission is owed.
    """
    purchase = await Purchase.get(purchase_id)
    if not purchase:
        raise NotFoundError("Purchase not found")
    if purchase.payment_status != "completed":
        log.info("commission_skipped", purchase_id=str(purchase_id), reason="not_completed", status=purchase.payment_status)
        return None

    existing = await Referral.find_one(Referral.purchase_id == purchase.id)
    if existing:
        log.info("commission_already_granted", purchase_id=str(purchase.id), referral_id=str(existing.id), status=existing.status)
        return existing

    if not purchase.has_used_referral_code or not purchase.used_referral_code:
        return None

    course = await Course.get(purchase.course_id)
    if not course:
        raise NotFoundError("Course not found")

    resolution = await resolve_referral_code(purchase.used_referral_code, course, purchase.buyer_id)
    if resolution.kind == ResolutionKind.SELF_REFERRAL:
        await log_event(
            str(purchase.buyer_id),
            "self_referral_blocked",
            "purchase",
            str(purchase.id),
            {"code": resolution.code, "course_id": str(course.id)},
        )
        return None
    if resolution.kind == ResolutionKind.NONE:
        if resolution.invalid_code:
            await log_event(
                str(purchase.buyer_id),
                "invalid_referral_code",
                "purchase",
                str(purchase.id),
                {"code": resolution.code, "course_id": str(course.id)},
            )
        return None

    amount = calculate_commission(course, resolution.referrer_id)
    if amount <= 0:
        log.info("commission_skipped", purchase_id=str(purchase.id), reason="zero_commission")
        return None

    referral = Referral(
        referrer_id=resolution.referrer_id,
        referred_user_id=purchase.buyer_id,
        course_id=course.id,
        purchase_id=purchase.id,
        referral_code=resolution.code,
        code_kind=resolution.kind.value,
        commission_paise=amount,
        credit_txn_id=PydanticObjectId(),
    )
    try:
        await referral.insert()
    except DuplicateKeyError:
        # Concurrent confirmation of the same purchase won the insert; it owns the credit.
        existing = await Referral.find_one(Referral.purchase_id == purchase.id)
        log.info("commission_already_granted", purchase_id=str(purchase.id), referral_id=str(existing.id) if existing else None)
        return existing

    referral = await _settle(referral, course.title)

    await log_event(
        str(referral.referrer_id),
        "commission_granted",
        "referral",
        str(referral.id),
        {"purchase_id": str(purchase.id), "amount": amount, "code_kind": referral.code_kind},
    )
    await notify(
        referral.referrer_id,
        "Commission Earned!",
        f"You earned {format_inr(amount)} from a referral purchase of \"{course.title}\"",
        type="success",
    )
    return referral


async def _settle(referral: Referral, course_title: str) -> Referral:
    """Apply the referral's wallet credit (idempotent on credit_txn_id) and mark it completed."""
    await ledger.credit(
        referral.referrer_id,
        referral.commission_paise,
        f"Referral commission: {course_title}",
        reference_type="purchase",
        reference_id=str(referral.purchase_id),
        txn_id=referral.credit_txn_id,
    )
    now = datetime.utcnow()
    await Referral.find_one({"_id": referral.id, "status": "pending"}).update(
        {"$set": {"status": "completed", "completed_at": now}}
    )
    referral.status = "completed"
    referral.completed_at = referral.completed_at or now
    log.info(
        "commission_granted",
        referral_id=str(referral.id),
        referrer_id=str(referral.referrer_id),
        purchase_id=str(referral.purchase_id),
        amount=referral.commission_paise,
    )
    return referral


async def complete_pending_referral(referral: Referral) -> Referral:
    """Recovery: finish a Referral whose grant was interrupted after the insert."""
    course = await Course.get(referral.course_id)
    title = course.title if course else str(referral.course_id)
    already = await ledger.is_credit_applied(referral.referrer_id, referral.credit_txn_id)
    referral = await _settle(referral, title)
    log.warning("commission_recovered", referral_id=str(referral.id), credit_was_applied=already)
    return referral


async def list_referrals(referrer_id: PydanticObjectId) -> list[Referral]:
    """Completed commissions earned by a user (pending ones are not yet backed by a wallet credit)."""
    return (
        await Referral.find(Referral.referrer_id == referrer_id, Referral.status == "completed")
        .sort(-Referral.created_at)
        .to_list()
    )


async def referral_stats(user_id: PydanticObjectId) -> dict:
    referrals = await list_referrals(user_id)
    return {
        "total_referrals": len(referrals),
        "total_commission": sum(r.commission_paise for r in referrals),
        "referred_users": len({r.referred_user_id for r in referrals}),
    }
