from datetime import datetime

from pymongo.errors import DuplicateKeyError

from app.core.exceptions import BadRequestError, ConflictError
from app.core.logging import get_logger
from app.models.user import User
from app.services import ledger
from app.services.referral_codes import generate_general_code

log = get_logger(__name__)

MAX_SIGNUP_ATTEMPTS = 3


async def create_user(email: str, name: str = "", phone: str | None = None, role: str = "user") -> User:
    """Signup: user gets a general referral code and an empty wallet."""
    email = (email or "").strip().lower()
    if not email:
        raise BadRequestError("Email required")
    if await User.find_one(User.email == email):
        raise ConflictError("Email already registered")
    for _ in range(MAX_SIGNUP_ATTEMPTS):
        user = User(
            email=email,
            name=name,
            phone=phone,
            role=role,
            referral_code=await generate_general_code(),
            last_login_at=datetime.utcnow(),
        )
        try:
            await user.insert()
        except DuplicateKeyError:
            if await User.find_one(User.email == email):
                raise ConflictError("Email already registered")
            continue  # referral code collided between check and insert
        break
    else:
        raise BadRequestError("Could not generate unique referral code")
    await ledger.ensure_wallet(user.id)
    log.info("user_created", user_id=str(user.id), email=user.email)
    from app.core.audit import log_event
    await log_event(str(user.id), "user_created", "user", str(user.id), {"email": user.email})
    return user


def session_payload_for_user(user: User) -> dict:
    return {"user_id": str(user.id), "session_version": user.session_version}
