from beanie import PydanticObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.core.exceptions import NotFoundError
from app.deps import get_current_user, parse_object_id
from app.models.purchase import Purchase
from app.models.user import User
from app.services import payments as payments_service
from app.services import purchases as purchases_service

router = APIRouter()


class StartPurchaseRequest(BaseModel):
    course_id: PydanticObjectId
    referral_code: str | None = None


class ConfirmPurchaseRequest(BaseModel):
    """Razorpay checkout handler response."""
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


@router.post("", status_code=201)
async def start_purchase(body: StartPurchaseRequest, user: User = Depends(get_current_user)):
    """Begin checkout: pending purchase at course price, plus a Razorpay order when payments are configured."""
    purchase, referral = await purchases_service.start_purchase(user.id, body.course_id, body.referral_code)
    order = await payments_service.create_order(purchase) if payments_service.payments_configured() else None
    return {
        "purchase": purchases_service.serialize_purchase(purchase),
        "referral": referral,
        "order": order,
    }


@router.get("")
async def my_purchases(user: User = Depends(get_current_user)):
    purchases = await purchases_service.list_purchases(user.id)
    return {"purchases": [purchases_service.serialize_purchase(p) for p in purchases]}


@router.post("/{purchase_id}/confirm")
async def confirm_purchase(purchase_id: str, body: ConfirmPurchaseRequest, user: User = Depends(get_current_user)):
    """Signed checkout callback: complete the purchase (once) and grant any referral commission (once)."""
    pid = parse_object_id(purchase_id, "Purchase")
    owned = await Purchase.find_one(Purchase.id == pid, Purchase.buyer_id == user.id)
    if not owned:
        raise NotFoundError("Purchase not found")
    payments_service.verify_checkout(owned, body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature)
    # The signed order was created for this purchase's amount and course.
    purchase, referral = await purchases_service.confirm_purchase(
        pid,
        body.razorpay_payment_id,
        amount_paise=owned.amount_paise,
        course_id=owned.course_id,
    )
    return {
        "purchase": purchases_service.serialize_purchase(purchase),
        "commission_granted": referral is not None and referral.status == "completed",
    }
