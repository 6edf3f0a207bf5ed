from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

PurchaseStatus = Literal["pending", "completed", "failed"]


class Purchase(Document):
    buyer_id: PydanticObjectId
    course_id: PydanticObjectId
    amount_paise: int
    currency: str = "INR"
    payment_status: PurchaseStatus = "pending"
    used_referral_code: str | None = None
    has_used_referral_code: bool = False
    gateway_order_id: str | None = None  # Razorpay order_id, set at checkout
    gateway_payment_id: str | None = None  # set on confirmation
    failure_reason: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    class Settings:
        name = "purchases"
        indexes = [
            [("buyer_id", 1), ("course_id", 1), ("payment_status", 1)],
            [("gateway_order_id", 1)],
        ]
