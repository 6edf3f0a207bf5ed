"""Cron: ledger recovery sweep. Worker startup has already initialised the DB."""

from app.core.logging import get_logger
from app.services.reconcile import reconcile_ledger

log = get_logger(__name__)


async def run_reconcile_ledger() -> dict:
    """Finish interrupted grants, journal entries and payout holds older than the grace period."""
    stats = await reconcile_ledger()
    if stats["errors"]:
        log.warning("reconcile_with_errors", errors=stats["errors"])
    return stats
