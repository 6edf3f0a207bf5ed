from datetime import datetime

import pymongo
from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class CourseReferralCode(Document):
    """Course-scoped referral code; one per (user, course), immutable once issued."""
    user_id: PydanticObjectId
    course_id: PydanticObjectId
    code: Indexed(str, unique=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "course_referral_codes"
        indexes = [
            pymongo.IndexModel(
                [("user_id", pymongo.ASCENDING), ("course_id", pymongo.ASCENDING)],
                unique=True,
                name="one_code_per_user_course",
            ),
            [("code", 1), ("course_id", 1)],
        ]
