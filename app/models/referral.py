from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class Referral(Document):
    """Commission record. At most one per purchase (unique purchase_id).

    status is "pending" only while the linked wallet credit (credit_txn_id) is in flight;
    the reconcile sweep completes any that stay pending.
    """
    referrer_id: PydanticObjectId
    referred_user_id: PydanticObjectId
    course_id: PydanticObjectId
    purchase_id: Indexed(PydanticObjectId, unique=True)
    referral_code: str
    code_kind: Literal["course_code", "general_code"]
    commission_paise: int
    credit_txn_id: PydanticObjectId
    status: Literal["pending", "completed"] = "pending"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    class Settings:
        name = "referrals"
        indexes = [
            [("referrer_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", 1)],
        ]
