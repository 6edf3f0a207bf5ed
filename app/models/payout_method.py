from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field


class PayoutMethod(Document):
    user_id: PydanticObjectId
    method_type: Literal["UPI", "BANK"]
    upi_id: str | None = None
    account_number: str | None = None
    ifsc_code: str | None = None
    account_holder_name: str | None = None
    is_default: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "payout_methods"
        indexes = [[("user_id", 1), ("created_at", -1)]]
