"""Wallet ledger: atomic balance updates paired with wallet_transactions rows.

Every operation is one conditional find_one_and_update on the user's wallet
document. The filter is the guard (balance check, hold present, no duplicate
in flight) so read-validate-write never happens in application memory. The
same update pushes a JournalEntry; the matching wallet_transactions row is then
written (credit/hold) or marked (release/settle) under a deterministic _id and
the entry is pulled. An entry left behind by a crash is finished by
flush_journal, from the read path or the reconcile sweep.
"""

from datetime import datetime
from typing import Any

from beanie import PydanticObjectId, UpdateResponse
from pymongo.errors import AutoReconnect, DuplicateKeyError, ExecutionTimeout, WTimeoutError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import get_settings
from app.core.exceptions import (
    ConflictError,
    HoldAlreadyActiveError,
    InsufficientBalanceError,
    InvalidAmountError,
    LedgerIntegrityError,
    NotFoundError,
)
from app.core.logging import get_logger
from app.models.wallet import JournalEntry, Wallet, WalletHold
from app.models.wallet_transaction import WalletTransaction

log = get_logger(__name__)

# AutoReconnect covers NetworkTimeout and connection resets.
TRANSIENT_ERRORS = (AutoReconnect, ExecutionTimeout, WTimeoutError)


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    log.warning(
        "ledger_retry",
        fn=getattr(retry_state.fn, "__name__", "?"),
        attempt=retry_state.attempt_number,
        error=type(exc).__name__ if exc else None,
    )


def _transient_retry():
    s = get_settings()
    return retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(s.ledger_max_attempts),
        wait=wait_exponential(multiplier=s.ledger_retry_min_seconds, min=s.ledger_retry_min_seconds, max=s.ledger_retry_max_seconds),
        before_sleep=_log_retry,
        reraise=True,
    )


def _require_positive(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise InvalidAmountError(details={"amount": amount})


async def ensure_wallet(user_id: PydanticObjectId) -> Wallet:
    """Return the user's wallet, creating an empty one if missing (race-safe on the unique user_id)."""
    wallet = await Wallet.find_one(Wallet.user_id == user_id)
    if wallet:
        return wallet
    try:
        wallet = Wallet(user_id=user_id)
        await wallet.insert()
        log.info("wallet_created", user_id=str(user_id))
        return wallet
    except DuplicateKeyError:
        return await Wallet.find_one(Wallet.user_id == user_id)


@_transient_retry()
async def _apply(
    user_id: PydanticObjectId,
    guard: dict[str, Any],
    inc: dict[str, int],
    entry: JournalEntry,
    push: dict[str, Any] | None = None,
    pull: dict[str, Any] | None = None,
) -> Wallet | None:
    """Single atomic wallet update. Returns the updated wallet, or None when the guard did not match."""
    update: dict[str, Any] = {
        "$inc": {**inc, "version": 1},
        "$set": {"updated_at": datetime.utcnow()},
        "$push": {"journal": entry.model_dump(), **(push or {})},
    }
    if pull:
        update["$pull"] = pull
    wallet = await Wallet.find_one({"user_id": user_id, **guard}).update(
        update,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if wallet is None:
        # A retry after an ambiguous network error lands here if the first attempt went through.
        current = await Wallet.find_one(Wallet.user_id == user_id)
        if current and any(e.entry_id == entry.entry_id for e in current.journal):
            return current
    return wallet


@_transient_retry()
async def _materialize(user_id: PydanticObjectId, entry: JournalEntry) -> WalletTransaction | None:
    """Write or mark the transaction row for a journal entry. Idempotent."""
    if entry.op in ("credit", "hold"):
        txn = WalletTransaction(
            id=entry.txn_id,
            user_id=user_id,
            type="credit" if entry.op == "credit" else "debit",
            amount=entry.amount,
            status="completed" if entry.op == "credit" else "pending",
            description=entry.description,
            reference_type=entry.reference_type,
            reference_id=entry.reference_id,
            created_at=entry.created_at,
            updated_at=entry.created_at,
        )
        try:
            await txn.insert()
            return txn
        except DuplicateKeyError:
            return await WalletTransaction.get(entry.txn_id)
    new_status = "reversed" if entry.op == "release" else "completed"
    await WalletTransaction.find_one({"_id": entry.txn_id, "status": "pending"}).update(
        {"$set": {"status": new_status, "updated_at": datetime.utcnow()}}
    )
    return await WalletTransaction.get(entry.txn_id)


@_transient_retry()
async def _pull(user_id: PydanticObjectId, entry: JournalEntry) -> None:
    await Wallet.find_one(Wallet.user_id == user_id).update(
        {"$pull": {"journal": {"entry_id": entry.entry_id}}}
    )


async def _finish(user_id: PydanticObjectId, entry: JournalEntry) -> WalletTransaction | None:
    if entry.op in ("release", "settle"):
        # The hold's own row may still be in the journal; flush in order so it exists first.
        await flush_journal(user_id)
        return await WalletTransaction.get(entry.txn_id)
    txn = await _materialize(user_id, entry)
    await _pull(user_id, entry)
    return txn


async def flush_journal(user_id: PydanticObjectId, older_than: datetime | None = None) -> Wallet | None:
    """Finish journal entries (oldest first). older_than restricts to entries created before it."""
    wallet = await Wallet.find_one(Wallet.user_id == user_id)
    if wallet is None:
        return None
    flushed = 0
    for entry in wallet.journal:
        if older_than is not None and entry.created_at > older_than:
            continue
        await _materialize(user_id, entry)
        await _pull(user_id, entry)
        flushed += 1
    if flushed and older_than is not None:
        log.warning("ledger_journal_recovered", user_id=str(user_id), entries=flushed)
    return await Wallet.find_one(Wallet.user_id == user_id)


async def is_credit_applied(user_id: PydanticObjectId, txn_id: PydanticObjectId) -> bool:
    """True if a credit with this txn id already reached the wallet.

    applied_txn_ids is written in the same update as the totals, so it is the authority.
    """
    wallet = await Wallet.find_one(Wallet.user_id == user_id)
    if wallet and (txn_id in wallet.applied_txn_ids or any(e.txn_id == txn_id for e in wallet.journal)):
        return True
    return await WalletTransaction.get(txn_id) is not None


async def credit(
    user_id: PydanticObjectId,
    amount: int,
    description: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    txn_id: PydanticObjectId | None = None,
) -> WalletTransaction:
    """Add amount to balance and total_earned; one completed credit row. Idempotent per txn_id."""
    _require_positive(amount)
    txn_id = txn_id or PydanticObjectId()
    await ensure_wallet(user_id)
    if await is_credit_applied(user_id, txn_id):
        log.info("ledger_credit_duplicate", user_id=str(user_id), txn_id=str(txn_id))
        await flush_journal(user_id)
        return await WalletTransaction.get(txn_id)
    entry = JournalEntry(
        op="credit",
        txn_id=txn_id,
        amount=amount,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    wallet = await _apply(
        user_id,
        {"applied_txn_ids": {"$ne": txn_id}},
        {"balance": amount, "total_earned": amount},
        entry,
        push={"applied_txn_ids": txn_id},
    )
    if wallet is None:
        # Same txn_id already applied by another caller; it owns the row.
        log.info("ledger_credit_in_flight", user_id=str(user_id), txn_id=str(txn_id))
        await flush_journal(user_id)
        return await WalletTransaction.get(txn_id)
    log.info("ledger_credit", user_id=str(user_id), amount=amount, balance=wallet.balance, txn_id=str(txn_id))
    return await _finish(user_id, entry)


async def hold_for_withdrawal(
    user_id: PydanticObjectId,
    amount: int,
    reference_id: str,
    description: str = "Payout hold",
    exclusive: bool = False,
    txn_id: PydanticObjectId | None = None,
) -> WalletTransaction:
    """Move amount from balance into a hold; one pending debit row.

    The balance check is part of the update filter. With exclusive=True the wallet must have no
    other active hold.
    """
    _require_positive(amount)
    txn_id = txn_id or PydanticObjectId()
    await ensure_wallet(user_id)
    entry = JournalEntry(
        op="hold",
        txn_id=txn_id,
        amount=amount,
        description=description,
        reference_type="payout_request",
        reference_id=reference_id,
    )
    guard: dict[str, Any] = {"balance": {"$gte": amount}, "applied_txn_ids": {"$ne": txn_id}}
    if exclusive:
        guard["holds"] = {"$size": 0}
    hold = WalletHold(txn_id=txn_id, amount=amount, reference_id=reference_id, created_at=entry.created_at)
    wallet = await _apply(
        user_id,
        guard,
        {"balance": -amount, "held": amount},
        entry,
        push={"holds": hold.model_dump(), "applied_txn_ids": txn_id},
    )
    if wallet is None:
        current = await Wallet.find_one(Wallet.user_id == user_id)
        if txn_id in current.applied_txn_ids:
            # Hold already placed under this txn id (retried call).
            await flush_journal(user_id)
            return await WalletTransaction.get(txn_id)
        if exclusive and current.holds:
            raise HoldAlreadyActiveError()
        log.info("ledger_hold_insufficient", user_id=str(user_id), amount=amount, balance=current.balance)
        raise InsufficientBalanceError(available_paise=current.balance, requested_paise=amount)
    log.info("ledger_hold", user_id=str(user_id), amount=amount, balance=wallet.balance, txn_id=str(txn_id))
    return await _finish(user_id, entry)


async def _resolved_hold(user_id: PydanticObjectId, txn_id: PydanticObjectId, expected: str) -> WalletTransaction:
    """Hold is no longer on the wallet: no-op if it already ended the expected way."""
    await flush_journal(user_id)
    txn = await WalletTransaction.get(txn_id)
    if txn is None or txn.user_id != user_id or txn.type != "debit":
        raise NotFoundError("Hold not found")
    if txn.status != expected:
        raise ConflictError(f"Hold already {txn.status}", details={"txn_id": str(txn_id), "status": txn.status})
    return txn


async def _end_hold(
    user_id: PydanticObjectId,
    txn_id: PydanticObjectId,
    op: str,
    amount: int | None,
) -> WalletTransaction:
    wallet = await ensure_wallet(user_id)
    expected = "reversed" if op == "release" else "completed"
    hold = next((h for h in wallet.holds if h.txn_id == txn_id), None)
    if hold is None:
        return await _resolved_hold(user_id, txn_id, expected)
    if amount is not None and amount != hold.amount:
        raise InvalidAmountError("Amount does not match hold", details={"hold": hold.amount, "amount": amount})
    entry = JournalEntry(
        op=op,
        txn_id=txn_id,
        amount=hold.amount,
        description="Payout hold released" if op == "release" else "Payout settled",
        reference_type="payout_request",
        reference_id=hold.reference_id,
    )
    if op == "release":
        inc = {"balance": hold.amount, "held": -hold.amount}
    else:
        inc = {"total_withdrawn": hold.amount, "held": -hold.amount}
    updated = await _apply(
        user_id,
        {"holds.txn_id": txn_id},
        inc,
        entry,
        pull={"holds": {"txn_id": txn_id}},
    )
    if updated is None:
        return await _resolved_hold(user_id, txn_id, expected)
    log.info(f"ledger_{op}", user_id=str(user_id), amount=hold.amount, balance=updated.balance, txn_id=str(txn_id))
    return await _finish(user_id, entry)


async def release_hold(user_id: PydanticObjectId, txn_id: PydanticObjectId, amount: int | None = None) -> WalletTransaction:
    """Return a hold to balance and mark its row reversed. Repeating on a reversed hold is a no-op."""
    return await _end_hold(user_id, txn_id, "release", amount)


async def settle_withdrawal(user_id: PydanticObjectId, txn_id: PydanticObjectId, amount: int | None = None) -> WalletTransaction:
    """Move a hold into total_withdrawn and mark its row completed. Balance is untouched."""
    return await _end_hold(user_id, txn_id, "settle", amount)


async def get_wallet(user_id: PydanticObjectId) -> Wallet:
    wallet = await ensure_wallet(user_id)
    if wallet.journal:
        wallet = await flush_journal(user_id)
    return wallet


def wallet_summary(wallet: Wallet) -> dict:
    return {
        "balance": wallet.balance,
        "total_earned": wallet.total_earned,
        "total_withdrawn": wallet.total_withdrawn,
        "held": wallet.held,
        "currency": get_settings().currency,
    }


async def list_transactions(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> tuple[list[WalletTransaction], int]:
    """Transaction history (newest first) and total count."""
    await get_wallet(user_id)
    total = await WalletTransaction.find(WalletTransaction.user_id == user_id).count()
    rows = await (
        WalletTransaction.find(WalletTransaction.user_id == user_id)
        .sort(-WalletTransaction.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
    return rows, total


async def audit_wallet(user_id: PydanticObjectId) -> dict:
    """Check wallet totals against themselves and against the transaction rows.

    Raises LedgerIntegrityError on any mismatch.
    """
    wallet = await get_wallet(user_id)
    rows = await WalletTransaction.find(WalletTransaction.user_id == user_id).to_list()
    credited = sum(r.amount for r in rows if r.type == "credit")
    withdrawn = sum(r.amount for r in rows if r.type == "debit" and r.status == "completed")
    held = sum(r.amount for r in rows if r.type == "debit" and r.status == "pending")
    problems = []
    if wallet.balance < 0:
        problems.append("negative_balance")
    if wallet.held != sum(h.amount for h in wallet.holds):
        problems.append("held_mismatch_holds")
    if wallet.total_earned != wallet.balance + wallet.total_withdrawn + wallet.held:
        problems.append("totals_identity")
    if credited != wallet.total_earned:
        problems.append("credits_mismatch")
    if withdrawn != wallet.total_withdrawn:
        problems.append("withdrawn_mismatch")
    if held != wallet.held:
        problems.append("held_mismatch_transactions")
    report = {
        "user_id": str(user_id),
        **wallet_summary(wallet),
        "transactions": len(rows),
        "credited": credited,
        "withdrawn_rows": withdrawn,
        "held_rows": held,
        "problems": problems,
    }
    if problems:
        log.critical("ledger_integrity_violation", **report)
        raise LedgerIntegrityError("Wallet ledger integrity violation", details=report)
    return report
