from datetime import datetime
from typing import Literal

import pymongo
from beanie import Document, PydanticObjectId
from pydantic import Field

# "approved" is accepted as an admin decision but stored as "processed": approval settles in the same call.
PayoutStatus = Literal["pending", "approved", "rejected", "processed"]


class PayoutRequest(Document):
    user_id: PydanticObjectId
    amount: int  # paise, held on the wallet while pending
    payout_method_id: PydanticObjectId
    hold_txn_id: PydanticObjectId
    status: PayoutStatus = "pending"
    notes: str | None = None
    processed_by: PydanticObjectId | None = None
    requested_at: datetime = Field(default_factory=datetime.utcnow)
    processed_at: datetime | None = None

    class Settings:
        name = "payout_requests"
        indexes = [
            pymongo.IndexModel(
                [("user_id", pymongo.ASCENDING)],
                unique=True,
                partialFilterExpression={"status": "pending"},
                name="one_pending_payout_per_user",
            ),
            [("status", 1), ("requested_at", -1)],
            [("user_id", 1), ("requested_at", -1)],
            [("hold_txn_id", 1)],
        ]
