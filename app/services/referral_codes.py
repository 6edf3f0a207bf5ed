"""Referral codes: issuance (general + course-scoped) and resolution for purchases."""

import secrets
from dataclasses import dataclass
from enum import Enum

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from app.core.exceptions import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.models.course import Course
from app.models.course_referral_code import CourseReferralCode
from app.models.user import User

log = get_logger(__name__)

# No 0/O, 1/I/L: codes get read out loud and typed from screenshots.
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
GENERAL_CODE_LENGTH = 8
COURSE_CODE_LENGTH = 10
MAX_CODE_ATTEMPTS = 10


class ResolutionKind(str, Enum):
    COURSE_CODE = "course_code"
    GENERAL_CODE = "general_code"
    NONE = "none"
    SELF_REFERRAL = "self_referral"


@dataclass(frozen=True)
class ReferralResolution:
    kind: ResolutionKind
    code: str = ""
    referrer_id: PydanticObjectId | None = None

    @property
    def has_referrer(self) -> bool:
        return self.kind in (ResolutionKind.COURSE_CODE, ResolutionKind.GENERAL_CODE)

    @property
    def invalid_code(self) -> bool:
        """Non-empty code that matched nothing."""
        return self.kind == ResolutionKind.NONE and bool(self.code)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _generate_code(length: int) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


async def _code_taken(code: str) -> bool:
    if await User.find_one(User.referral_code == code):
        return True
    return await CourseReferralCode.find_one(CourseReferralCode.code == code) is not None


async def generate_general_code() -> str:
    """Unused code for a new user. Uniqueness is finally enforced by the unique index on insert."""
    for _ in range(MAX_CODE_ATTEMPTS):
        code = _generate_code(GENERAL_CODE_LENGTH)
        if not await _code_taken(code):
            return code
    raise BadRequestError("Could not generate unique referral code")


async def get_or_create_course_code(user_id: PydanticObjectId, course_id: PydanticObjectId) -> CourseReferralCode:
    """Return the user's code for this course, issuing it on first request. Immutable once created."""
    existing = await CourseReferralCode.find_one(
        CourseReferralCode.user_id == user_id,
        CourseReferralCode.course_id == course_id,
    )
    if existing:
        return existing
    course = await Course.get(course_id)
    if not course or not course.is_active:
        raise NotFoundError("Course not found")
    for _ in range(MAX_CODE_ATTEMPTS):
        code = _generate_code(COURSE_CODE_LENGTH)
        if await _code_taken(code):
            continue
        crc = CourseReferralCode(user_id=user_id, course_id=course_id, code=code)
        try:
            await crc.insert()
        except DuplicateKeyError:
            # Either a concurrent request issued this user's code, or the code collided.
            existing = await CourseReferralCode.find_one(
                CourseReferralCode.user_id == user_id,
                CourseReferralCode.course_id == course_id,
            )
            if existing:
                return existing
            continue
        log.info("course_code_created", user_id=str(user_id), course_id=str(course_id), code=code)
        return crc
    raise BadRequestError("Could not generate unique referral code")


async def list_my_codes(user_id: PydanticObjectId) -> dict:
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    course_codes = await CourseReferralCode.find(CourseReferralCode.user_id == user_id).to_list()
    titles = {}
    if course_codes:
        courses = await Course.find({"_id": {"$in": [c.course_id for c in course_codes]}}).to_list()
        titles = {c.id: c.title for c in courses}
    return {
        "general_referral_code": user.referral_code,
        "course_codes": [
            {
                "course_id": str(c.course_id),
                "course_title": titles.get(c.course_id),
                "referral_code": c.code,
                "created_at": c.created_at.isoformat(),
            }
            for c in course_codes
        ],
    }


async def resolve_referral_code(code: str | None, course: Course, buyer_id: PydanticObjectId) -> ReferralResolution:
    """Find who a code attributes a purchase of `course` to.

    Course-scoped code for this course first, then a user's general code; first match wins.
    Referrer == buyer resolves to SELF_REFERRAL. Read-only apart from logging.
    """
    code = normalize_code(code)
    if not code:
        return ReferralResolution(ResolutionKind.NONE)

    kind = ResolutionKind.COURSE_CODE
    referrer_id = None
    crc = await CourseReferralCode.find_one(
        CourseReferralCode.code == code,
        CourseReferralCode.course_id == course.id,
    )
    if crc:
        referrer_id = crc.user_id
    else:
        user = await User.find_one(User.referral_code == code)
        if user:
            kind = ResolutionKind.GENERAL_CODE
            referrer_id = user.id

    if referrer_id is None:
        log.warning("invalid_referral_code", code=code, course_id=str(course.id), buyer_id=str(buyer_id))
        return ReferralResolution(ResolutionKind.NONE, code=code)
    if referrer_id == buyer_id:
        log.warning("self_referral_blocked", code=code, course_id=str(course.id), buyer_id=str(buyer_id))
        return ReferralResolution(ResolutionKind.SELF_REFERRAL, code=code, referrer_id=referrer_id)
    return ReferralResolution(kind, code=code, referrer_id=referrer_id)


async def validate_code(code: str | None, course_id: PydanticObjectId, buyer_id: PydanticObjectId) -> dict:
    """Checkout helper: report what a code would resolve to, without side effects."""
    course = await Course.get(course_id)
    if not course:
        raise NotFoundError("Course not found")
    resolution = await resolve_referral_code(code, course, buyer_id)
    messages = {
        ResolutionKind.COURSE_CODE: "Referral code applied",
        ResolutionKind.GENERAL_CODE: "Referral code applied",
        ResolutionKind.SELF_REFERRAL: "Cannot use your own referral code",
        ResolutionKind.NONE: "Invalid referral code" if resolution.invalid_code else "No referral code",
    }
    return {
        "valid": resolution.has_referrer,
        "kind": resolution.kind.value,
        "message": messages[resolution.kind],
    }
