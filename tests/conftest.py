import itertools
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Use test DB
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "learnearn_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "test-key-secret")

_mongo_ok: bool | None = None


def _mongo_reachable() -> bool:
    global _mongo_ok
    if _mongo_ok is None:
        from pymongo import MongoClient
        from pymongo.errors import PyMongoError
        client = MongoClient(os.environ["MONGODB_URI"], serverSelectionTimeoutMS=1500)
        try:
            client.admin.command("ping")
            _mongo_ok = True
        except PyMongoError:
            _mongo_ok = False
        finally:
            client.close()
    return _mongo_ok


@pytest.fixture
def mongo() -> None:
    if not _mongo_reachable():
        pytest.skip("MongoDB not reachable at MONGODB_URI")


@pytest_asyncio.fixture
async def db(mongo) -> AsyncGenerator[None, None]:
    """Fresh collections per test (indexes kept)."""
    from app.db.init import DOCUMENT_MODELS, init_db
    await init_db()
    for model in DOCUMENT_MODELS:
        await model.get_motor_collection().delete_many({})
    yield


@pytest_asyncio.fixture
async def make_user(db):
    from app.services.users import create_user
    counter = itertools.count(1)

    async def _make(role: str = "user", name: str | None = None):
        n = next(counter)
        return await create_user(f"user{n}@example.com", name=name or f"User {n}", role=role)

    return _make


@pytest_asyncio.fixture
async def make_course(db):
    from app.models.course import Course

    async def _make(price_paise: int = 100000, **kwargs):
        course = Course(title=kwargs.pop("title", "PDF Course"), price_paise=price_paise, **kwargs)
        await course.insert()
        return course

    return _make


@pytest_asyncio.fixture
async def make_payout_method(db):
    from app.services.payouts import add_payout_method

    async def _make(user, method_type: str = "UPI"):
        if method_type == "UPI":
            return await add_payout_method(user.id, "UPI", upi_id="someone@upi")
        return await add_payout_method(
            user.id, "BANK", account_number="1234567890", ifsc_code="sbin0001234", account_holder_name="Someone"
        )

    return _make


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


def login(client: AsyncClient, user) -> None:
    from app.core.security import create_session_cookie
    from app.deps import SESSION_COOKIE_NAME
    from app.services.users import session_payload_for_user
    client.cookies.set(SESSION_COOKIE_NAME, create_session_cookie(session_payload_for_user(user)))


@pytest.fixture
def as_user():
    return login
