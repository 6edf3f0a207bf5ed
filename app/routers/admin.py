from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.deps import parse_object_id, require_admin
from app.models.user import User
from app.services import ledger
from app.services import payouts as payouts_service
from app.services.reconcile import reconcile_ledger

router = APIRouter()


class PayoutDecision(BaseModel):
    status: Literal["approved", "rejected"]
    notes: str | None = None


@router.get("/payout-requests")
async def admin_list_payout_requests(
    user: User = Depends(require_admin),
    status: Literal["pending", "approved", "rejected", "processed"] | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Admin: payout requests, newest first, optionally by status."""
    requests = await payouts_service.list_requests(status, limit, offset)
    return {"payout_requests": [payouts_service.serialize_request(p) for p in requests]}


@router.put("/payout-requests/{request_id}")
async def admin_decide_payout(request_id: str, body: PayoutDecision, user: User = Depends(require_admin)):
    """Admin: approve (settle, status processed) or reject (hold returned) a pending payout request."""
    rid = parse_object_id(request_id, "Payout request")
    if body.status == "approved":
        payout = await payouts_service.approve_payout(rid, admin_id=user.id, notes=body.notes)
    else:
        payout = await payouts_service.reject_payout(rid, admin_id=user.id, notes=body.notes)
    return {"payout_request": payouts_service.serialize_request(payout)}


@router.get("/wallets/{user_id}/audit")
async def admin_audit_wallet(user_id: str, user: User = Depends(require_admin)):
    """Admin: check a wallet's totals against its transaction rows (500 LEDGER_INTEGRITY on mismatch)."""
    return await ledger.audit_wallet(parse_object_id(user_id, "User"))


@router.post("/reconcile")
async def admin_reconcile(user: User = Depends(require_admin)):
    """Admin: run the ledger recovery sweep now."""
    return await reconcile_ledger()
