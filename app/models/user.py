from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class User(Document):
    email: Indexed(str, unique=True)
    name: str = ""
    phone: str | None = None
    role: str = "user"  # "user" | "admin"
    # General referral code: generated once at signup, never changed.
    referral_code: Indexed(str, unique=True)
    is_suspended: bool = False
    session_version: int = 0
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
