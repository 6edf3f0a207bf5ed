"""Recovery sweep for ledger operations interrupted between their atomic steps.

Only touches work older than the grace period so in-flight requests are left to finish themselves.
"""

from datetime import datetime, timedelta

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.payout_request import PayoutRequest
from app.models.referral import Referral
from app.models.wallet import Wallet
from app.services import ledger
from app.services.commission_grants import complete_pending_referral

log = get_logger(__name__)


async def _resolve_hold(user_id, hold, stats: dict) -> None:
    payout = await PayoutRequest.find_one(PayoutRequest.hold_txn_id == hold.txn_id)
    if payout is None:
        # Hold placed but the request insert never happened.
        await ledger.release_hold(user_id, hold.txn_id)
        stats["orphan_holds_released"] += 1
    elif payout.status == "processed":
        await ledger.settle_withdrawal(user_id, hold.txn_id)
        stats["holds_settled"] += 1
    elif payout.status == "rejected":
        await ledger.release_hold(user_id, hold.txn_id)
        stats["holds_released"] += 1


async def reconcile_ledger(grace_seconds: int | None = None) -> dict:
    """Finish stale journal entries, pending referrals and holds whose payout already ended."""
    if grace_seconds is None:
        grace_seconds = get_settings().reconcile_grace_seconds
    cutoff = datetime.utcnow() - timedelta(seconds=grace_seconds)
    stats = {
        "journals_flushed": 0,
        "referrals_completed": 0,
        "orphan_holds_released": 0,
        "holds_settled": 0,
        "holds_released": 0,
        "errors": 0,
    }

    for wallet in await Wallet.find({"journal.created_at": {"$lt": cutoff}}).to_list():
        try:
            await ledger.flush_journal(wallet.user_id, older_than=cutoff)
            stats["journals_flushed"] += 1
        except Exception:
            stats["errors"] += 1
            log.exception("reconcile_journal_failed", user_id=str(wallet.user_id))

    for referral in await Referral.find(Referral.status == "pending", Referral.created_at < cutoff).to_list():
        try:
            await complete_pending_referral(referral)
            stats["referrals_completed"] += 1
        except Exception:
            stats["errors"] += 1
            log.exception("reconcile_referral_failed", referral_id=str(referral.id))

    for wallet in await Wallet.find({"holds.created_at": {"$lt": cutoff}}).to_list():
        for hold in wallet.holds:
            if hold.created_at >= cutoff:
                continue
            try:
                await _resolve_hold(wallet.user_id, hold, stats)
            except Exception:
                stats["errors"] += 1
                log.exception("reconcile_hold_failed", user_id=str(wallet.user_id), txn_id=str(hold.txn_id))

    log.info("reconcile_done", **stats)
    return stats
