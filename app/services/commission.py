"""Commission policy: what a referrer earns for one purchase of a course."""

from decimal import ROUND_HALF_UP, Decimal

from beanie import PydanticObjectId

from app.core.config import get_settings
from app.models.course import Course


def commission_percent(course: Course) -> float:
    if course.commission_percent is None:
        return get_settings().default_commission_percent
    return course.commission_percent


def calculate_commission(course: Course, referrer_id: PydanticObjectId | None = None) -> int:
    """Commission in paise, clamped to [0, price]. 0 means nothing is owed.

    percentage: price * percent / 100 rounded half-up to the paisa (unset percent -> settings default).
    fixed: commission_fixed_paise.
    """
    price = course.price_paise or 0
    if price <= 0:
        return 0
    if course.commission_type == "fixed":
        amount = course.commission_fixed_paise or 0
    else:
        rate = Decimal(str(commission_percent(course))) / Decimal(100)
        amount = int((Decimal(price) * rate).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return max(0, min(amount, price))
