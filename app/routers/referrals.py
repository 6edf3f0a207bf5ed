from beanie import PydanticObjectId
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.deps import get_current_user
from app.models.user import User
from app.services import commission_grants
from app.services import referral_codes as referral_codes_service

router = APIRouter()


class CourseCodeRequest(BaseModel):
    course_id: PydanticObjectId


class ValidateCodeRequest(BaseModel):
    referral_code: str
    course_id: PydanticObjectId


@router.get("/my-codes")
async def my_codes(user: User = Depends(get_current_user)):
    """General referral code plus every course code issued so far."""
    return await referral_codes_service.list_my_codes(user.id)


@router.post("/generate-course-code")
async def generate_course_code(body: CourseCodeRequest, user: User = Depends(get_current_user)):
    """Get or create my referral code for one course."""
    crc = await referral_codes_service.get_or_create_course_code(user.id, body.course_id)
    return {"referral_code": crc.code, "course_id": str(crc.course_id)}


@router.post("/validate-code")
async def validate_code(body: ValidateCodeRequest, user: User = Depends(get_current_user)):
    return await referral_codes_service.validate_code(body.referral_code, body.course_id, user.id)


@router.get("/stats")
async def referral_stats(user: User = Depends(get_current_user)):
    """Completed referrals and total commission earned (paise)."""
    stats = await commission_grants.referral_stats(user.id)
    referrals = await commission_grants.list_referrals(user.id)
    stats["referrals"] = [
        {
            "id": str(r.id),
            "course_id": str(r.course_id),
            "commission": r.commission_paise,
            "code_kind": r.code_kind,
            "created_at": r.created_at.isoformat(),
        }
        for r in referrals
    ]
    return stats
