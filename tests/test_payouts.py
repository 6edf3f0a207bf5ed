"""Payout requests: hold on request, settle on approve, release on reject."""

import asyncio

import pytest
import pytest_asyncio
from beanie import PydanticObjectId

from app.core.exceptions import (
    BadRequestError,
    BelowMinimumError,
    InsufficientBalanceError,
    MethodNotFoundError,
    NotPendingError,
    RequestAlreadyPendingError,
)
from app.models.payout_request import PayoutRequest
from app.models.wallet_transaction import WalletTransaction
from app.services import ledger, payouts

pytestmark = [pytest.mark.asyncio, pytest.mark.usefixtures("db")]


@pytest_asyncio.fixture
async def earner(make_user, make_payout_method):
    """User with 50000 paise earned and a UPI payout method."""
    user = await make_user()
    await ledger.credit(user.id, 50000, "Referral commission")
    method = await make_payout_method(user)
    return user, method


async def test_request_holds_amount(earner):
    user, method = earner
    payout = await payouts.request_payout(user.id, 30000, method.id)

    assert payout.status == "pending"
    wallet = await ledger.get_wallet(user.id)
    assert (wallet.balance, wallet.held, wallet.total_withdrawn) == (20000, 30000, 0)
    hold = await WalletTransaction.get(payout.hold_txn_id)
    assert (hold.type, hold.amount, hold.status) == ("debit", 30000, "pending")
    assert hold.reference_id == str(payout.id)


async def test_reject_returns_hold(earner):
    user, method = earner
    payout = await payouts.request_payout(user.id, 30000, method.id)

    rejected = await payouts.reject_payout(payout.id, notes="Details mismatch")

    assert rejected.status == "rejected"
    assert rejected.notes == "Details mismatch"
    wallet = await ledger.get_wallet(user.id)
    assert (wallet.balance, wallet.held, wallet.total_withdrawn) == (50000, 0, 0)
    assert (await WalletTransaction.get(payout.hold_txn_id)).status == "reversed"


async def test_approve_settles_hold(earner, make_user):
    user, method = earner
    admin = await make_user(role="admin")
    payout = await payouts.request_payout(user.id, 30000, method.id)

    processed = await payouts.approve_payout(payout.id, admin_id=admin.id)

    assert processed.status == "processed"
    assert processed.processed_by == admin.id
    assert processed.processed_at is not None
    wallet = await ledger.get_wallet(user.id)
    assert (wallet.balance, wallet.held, wallet.total_withdrawn, wallet.total_earned) == (20000, 0, 30000, 50000)
    assert (await WalletTransaction.get(payout.hold_txn_id)).status == "completed"
    await ledger.audit_wallet(user.id)


async def test_terminal_request_cannot_change(earner):
    user, method = earner
    payout = await payouts.request_payout(user.id, 30000, method.id)
    await payouts.approve_payout(payout.id)

    with pytest.raises(NotPendingError) as exc:
        await payouts.reject_payout(payout.id)
    assert exc.value.details == {"status": "processed"}
    with pytest.raises(NotPendingError):
        await payouts.approve_payout(payout.id)
    assert (await ledger.get_wallet(user.id)).total_withdrawn == 30000


async def test_concurrent_approve_and_reject_one_wins(earner):
    user, method = earner
    payout = await payouts.request_payout(user.id, 30000, method.id)

    results = await asyncio.gather(
        payouts.approve_payout(payout.id),
        payouts.reject_payout(payout.id),
        return_exceptions=True,
    )

    assert sum(isinstance(r, NotPendingError) for r in results) == 1
    final = await PayoutRequest.get(payout.id)
    wallet = await ledger.get_wallet(user.id)
    assert wallet.held == 0
    if final.status == "processed":
        assert (wallet.balance, wallet.total_withdrawn) == (20000, 30000)
    else:
        assert (wallet.balance, wallet.total_withdrawn) == (50000, 0)


async def test_below_minimum(earner):
    user, method = earner
    with pytest.raises(BelowMinimumError) as exc:
        await payouts.request_payout(user.id, 999, method.id)
    assert exc.value.code == "BELOW_MINIMUM"
    assert await PayoutRequest.find_all().count() == 0


async def test_method_must_belong_to_user(earner, make_user, make_payout_method):
    user, _ = earner
    other = await make_user()
    foreign = await make_payout_method(other)
    with pytest.raises(MethodNotFoundError):
        await payouts.request_payout(user.id, 10000, foreign.id)
    with pytest.raises(MethodNotFoundError):
        await payouts.request_payout(user.id, 10000, PydanticObjectId())


async def test_insufficient_balance_leaves_nothing_behind(earner):
    user, method = earner
    with pytest.raises(InsufficientBalanceError) as exc:
        await payouts.request_payout(user.id, 60000, method.id)
    assert exc.value.details == {"available_paise": 50000, "requested_paise": 60000}
    assert await PayoutRequest.find_all().count() == 0
    wallet = await ledger.get_wallet(user.id)
    assert (wallet.balance, wallet.held) == (50000, 0)


async def test_one_pending_request_per_user(earner):
    user, method = earner
    await payouts.request_payout(user.id, 10000, method.id)
    with pytest.raises(RequestAlreadyPendingError):
        await payouts.request_payout(user.id, 10000, method.id)
    assert (await ledger.get_wallet(user.id)).held == 10000


async def test_concurrent_requests_only_one_opens(earner):
    user, method = earner
    results = await asyncio.gather(
        *(payouts.request_payout(user.id, 10000, method.id) for _ in range(5)),
        return_exceptions=True,
    )

    opened = [r for r in results if isinstance(r, PayoutRequest)]
    assert len(opened) == 1
    assert all(isinstance(r, RequestAlreadyPendingError) for r in results if r not in opened)
    wallet = await ledger.get_wallet(user.id)
    assert (wallet.balance, wallet.held) == (40000, 10000)
    assert await PayoutRequest.find_all().count() == 1


async def test_new_request_after_previous_resolved(earner):
    user, method = earner
    first = await payouts.request_payout(user.id, 10000, method.id)
    await payouts.reject_payout(first.id)
    second = await payouts.request_payout(user.id, 20000, method.id)
    assert second.status == "pending"
    assert [p.id for p in await payouts.list_user_requests(user.id)] == [second.id, first.id]


async def test_payout_method_validation(make_user):
    user = await make_user()
    with pytest.raises(BadRequestError):
        await payouts.add_payout_method(user.id, "UPI", upi_id="  ")
    with pytest.raises(BadRequestError):
        await payouts.add_payout_method(user.id, "BANK", account_number="123")
    bank = await payouts.add_payout_method(
        user.id, "BANK", account_number="123", ifsc_code=" sbin0001 ", account_holder_name="A", is_default=True
    )
    assert bank.ifsc_code == "SBIN0001"
    upi = await payouts.add_payout_method(user.id, "UPI", upi_id="a@upi", is_default=True)
    methods = {m.id: m.is_default for m in await payouts.list_payout_methods(user.id)}
    assert methods == {bank.id: False, upi.id: True}


async def test_full_balance_request_then_reject(make_user, make_payout_method):
    user = await make_user()
    method = await make_payout_method(user)
    await ledger.credit(user.id, 50000, "Referral commission")

    payout = await payouts.request_payout(user.id, 50000, method.id)
    wallet = await ledger.get_wallet(user.id)
    assert (wallet.balance, wallet.held) == (0, 50000)
    pending = await WalletTransaction.find(WalletTransaction.type == "debit", WalletTransaction.user_id == user.id).to_list()
    assert [(t.amount, t.status) for t in pending] == [(50000, "pending")]

    await payouts.reject_payout(payout.id, notes="Invalid UPI")
    wallet = await ledger.get_wallet(user.id)
    assert (wallet.balance, wallet.total_earned, wallet.total_withdrawn, wallet.held) == (50000, 50000, 0, 0)
