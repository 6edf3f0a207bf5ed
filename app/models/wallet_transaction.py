from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field


class WalletTransaction(Document):
    """Append-only ledger row. _id is chosen by the ledger so rewrites are idempotent."""
    user_id: PydanticObjectId
    type: Literal["credit", "debit"]
    amount: int  # paise, always positive
    status: Literal["pending", "completed", "reversed"] = "completed"
    description: str = ""
    reference_type: str | None = None  # purchase, payout_request
    reference_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "wallet_transactions"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("reference_type", 1), ("reference_id", 1)],
        ]
