from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field


class Course(Document):
    title: str
    description: str = ""
    price_paise: int = Field(ge=0)
    # Referral commission policy. percentage: commission_percent of price (unset -> settings default).
    # fixed: commission_fixed_paise. Always clamped to [0, price].
    commission_type: Literal["percentage", "fixed"] = "percentage"
    commission_percent: float | None = Field(default=None, ge=0, le=100)
    commission_fixed_paise: int | None = Field(default=None, ge=0)
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "courses"
        indexes = [[("is_active", 1)]]
