from app.models.user import User
from app.models.course import Course
from app.models.course_referral_code import CourseReferralCode
from app.models.purchase import Purchase
from app.models.referral import Referral
from app.models.wallet import Wallet
from app.models.wallet_transaction import WalletTransaction
from app.models.payout_method import PayoutMethod
from app.models.payout_request import PayoutRequest
from app.models.notification import Notification
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob

__all__ = [
    "User",
    "Course",
    "CourseReferralCode",
    "Purchase",
    "Referral",
    "Wallet",
    "WalletTransaction",
    "PayoutMethod",
    "PayoutRequest",
    "Notification",
    "AuditLog",
    "FailedJob",
]
