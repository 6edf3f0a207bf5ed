"""Payout methods and payout requests: pending -> processed | rejected.

A request holds its amount on the wallet (exclusive hold, so one at a time) and
the terminal transition is a compare-and-swap on status before the ledger
settles or releases the hold.
"""

from datetime import datetime
from typing import Literal

from beanie import PydanticObjectId, UpdateResponse
from pymongo.errors import DuplicateKeyError

from app.core.audit import log_event
from app.core.config import get_settings
from app.core.exceptions import (
    BadRequestError,
    BelowMinimumError,
    HoldAlreadyActiveError,
    InvalidAmountError,
    MethodNotFoundError,
    NotFoundError,
    NotPendingError,
    RequestAlreadyPendingError,
)
from app.core.logging import get_logger
from app.models.payout_method import PayoutMethod
from app.models.payout_request import PayoutRequest
from app.services import ledger
from app.services.notifications import format_inr, notify

log = get_logger(__name__)


async def add_payout_method(
    user_id: PydanticObjectId,
    method_type: Literal["UPI", "BANK"],
    upi_id: str | None = None,
    account_number: str | None = None,
    ifsc_code: str | None = None,
    account_holder_name: str | None = None,
    is_default: bool = False,
) -> PayoutMethod:
    if method_type == "UPI" and not (upi_id or "").strip():
        raise BadRequestError("UPI ID is required for UPI method")
    if method_type == "BANK" and not (account_number and ifsc_code and account_holder_name):
        raise BadRequestError("Bank details are required for bank transfer method")
    if is_default:
        await PayoutMethod.find(PayoutMethod.user_id == user_id).update({"$set": {"is_default": False}})
    method = PayoutMethod(
        user_id=user_id,
        method_type=method_type,
        upi_id=upi_id.strip() if method_type == "UPI" else None,
        account_number=account_number if method_type == "BANK" else None,
        ifsc_code=ifsc_code.strip().upper() if method_type == "BANK" else None,
        account_holder_name=account_holder_name if method_type == "BANK" else None,
        is_default=is_default,
    )
    await method.insert()
    return method


async def list_payout_methods(user_id: PydanticObjectId) -> list[PayoutMethod]:
    return await PayoutMethod.find(PayoutMethod.user_id == user_id).sort(-PayoutMethod.created_at).to_list()


async def get_pending_request(user_id: PydanticObjectId) -> PayoutRequest | None:
    return await PayoutRequest.find_one(PayoutRequest.user_id == user_id, PayoutRequest.status == "pending")


async def request_payout(user_id: PydanticObjectId, amount: int, payout_method_id: PydanticObjectId) -> PayoutRequest:
    """Place a hold for amount and open a pending payout request.

    Fails with BelowMinimum, RequestAlreadyPending, MethodNotFound or InsufficientBalance;
    on failure nothing is held and no request exists.
    """
    settings = get_settings()
    if not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(details={"amount": amount})
    if amount < settings.min_payout_paise:
        raise BelowMinimumError(settings.min_payout_paise)
    if await get_pending_request(user_id):
        raise RequestAlreadyPendingError()
    method = await PayoutMethod.get(payout_method_id)
    if not method or method.user_id != user_id:
        raise MethodNotFoundError()

    request_id = PydanticObjectId()
    try:
        hold = await ledger.hold_for_withdrawal(
            user_id,
            amount,
            reference_id=str(request_id),
            description=f"Payout request - {method.method_type}",
            exclusive=True,
        )
    except HoldAlreadyActiveError:
        # Lost the race to a concurrent request from the same user.
        raise RequestAlreadyPendingError()

    payout = PayoutRequest(
        id=request_id,
        user_id=user_id,
        amount=amount,
        payout_method_id=method.id,
        hold_txn_id=hold.id,
    )
    try:
        await payout.insert()
    except DuplicateKeyError:
        await ledger.release_hold(user_id, hold.id)
        raise RequestAlreadyPendingError()

    log.info("payout_requested", user_id=str(user_id), payout_request_id=str(payout.id), amount=amount)
    await log_event(str(user_id), "payout_requested", "payout_request", str(payout.id), {"amount": amount})
    await notify(
        user_id,
        "Payout Request Submitted",
        f"Your payout request of {format_inr(amount)} has been submitted and is pending approval.",
    )
    return payout


async def _transition(
    request_id: PydanticObjectId,
    new_status: str,
    admin_id: PydanticObjectId | None,
    notes: str | None,
) -> PayoutRequest:
    """pending -> new_status, atomically. Exactly one caller wins; the rest get NotPending."""
    updated = await PayoutRequest.find_one({"_id": request_id, "status": "pending"}).update(
        {
            "$set": {
                "status": new_status,
                "processed_at": datetime.utcnow(),
                "processed_by": admin_id,
                "notes": notes,
            }
        },
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        current = await PayoutRequest.get(request_id)
        if not current:
            raise NotFoundError("Payout request not found")
        raise NotPendingError(current.status)
    return updated


async def approve_payout(
    request_id: PydanticObjectId,
    admin_id: PydanticObjectId | None = None,
    notes: str | None = None,
) -> PayoutRequest:
    """Admin (already authorised): pending -> processed; held funds move to total_withdrawn."""
    payout = await _transition(request_id, "processed", admin_id, notes)
    await ledger.settle_withdrawal(payout.user_id, payout.hold_txn_id)
    log.info("payout_processed", payout_request_id=str(payout.id), user_id=str(payout.user_id), amount=payout.amount)
    await log_event(
        str(payout.user_id),
        "payout_processed",
        "payout_request",
        str(payout.id),
        {"amount": payout.amount},
        actor_id=str(admin_id) if admin_id else None,
    )
    await notify(
        payout.user_id,
        "Payout Processed",
        f"Your payout of {format_inr(payout.amount)} has been processed.",
        type="success",
    )
    return payout


async def reject_payout(
    request_id: PydanticObjectId,
    admin_id: PydanticObjectId | None = None,
    notes: str | None = None,
) -> PayoutRequest:
    """Admin (already authorised): pending -> rejected; the hold returns to balance."""
    payout = await _transition(request_id, "rejected", admin_id, notes)
    await ledger.release_hold(payout.user_id, payout.hold_txn_id)
    log.info("payout_rejected", payout_request_id=str(payout.id), user_id=str(payout.user_id), amount=payout.amount)
    await log_event(
        str(payout.user_id),
        "payout_rejected",
        "payout_request",
        str(payout.id),
        {"amount": payout.amount, "notes": notes},
        actor_id=str(admin_id) if admin_id else None,
    )
    reason = f" Reason: {notes}" if notes else ""
    await notify(
        payout.user_id,
        "Payout Rejected",
        f"Your payout request of {format_inr(payout.amount)} was rejected and the amount returned to your wallet.{reason}",
        type="warning",
    )
    return payout


async def list_user_requests(user_id: PydanticObjectId) -> list[PayoutRequest]:
    return await PayoutRequest.find(PayoutRequest.user_id == user_id).sort(-PayoutRequest.requested_at).to_list()


async def list_requests(status: str | None = None, limit: int = 50, offset: int = 0) -> list[PayoutRequest]:
    query = PayoutRequest.find(PayoutRequest.status == status) if status else PayoutRequest.find_all()
    return await query.sort(-PayoutRequest.requested_at).skip(offset).limit(limit).to_list()


def serialize_request(p: PayoutRequest) -> dict:
    return {
        "id": str(p.id),
        "user_id": str(p.user_id),
        "amount": p.amount,
        "payout_method_id": str(p.payout_method_id),
        "status": p.status,
        "notes": p.notes,
        "requested_at": p.requested_at.isoformat(),
        "processed_at": p.processed_at.isoformat() if p.processed_at else None,
    }
