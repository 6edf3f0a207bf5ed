import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.models.audit_log import AuditLog
from app.models.course import Course
from app.models.course_referral_code import CourseReferralCode
from app.models.failed_job import FailedJob
from app.models.notification import Notification
from app.models.payout_method import PayoutMethod
from app.models.payout_request import PayoutRequest
from app.models.purchase import Purchase
from app.models.referral import Referral
from app.models.user import User
from app.models.wallet import Wallet
from app.models.wallet_transaction import WalletTransaction

DOCUMENT_MODELS = [
    User,
    Course,
    CourseReferralCode,
    Purchase,
    Referral,
    Wallet,
    WalletTransaction,
    PayoutMethod,
    PayoutRequest,
    Notification,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def get_client(uri: str | None = None) -> AsyncIOMotorClient:
    settings = get_settings()
    uri = uri or settings.mongodb_uri
    kwargs = {}
    if _use_tls(uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    return AsyncIOMotorClient(uri, **kwargs)


async def init_db(db_name: str | None = None) -> None:
    """Connect and register documents; init_beanie also creates the unique indexes the ledger relies on."""
    settings = get_settings()
    client = get_client()
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
