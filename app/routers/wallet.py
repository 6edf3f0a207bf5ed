from typing import Literal

from beanie import PydanticObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.core.pagination import paginate
from app.deps import get_current_user
from app.models.user import User
from app.services import ledger
from app.services import payouts as payouts_service

router = APIRouter()


class AddPayoutMethodRequest(BaseModel):
    method_type: Literal["UPI", "BANK"]
    upi_id: str | None = None
    account_number: str | None = None
    ifsc_code: str | None = None
    account_holder_name: str | None = None
    is_default: bool = False


class PayoutRequestBody(BaseModel):
    amount_paise: int
    payout_method_id: PydanticObjectId


@router.get("")
async def wallet_summary(user: User = Depends(get_current_user)):
    """Balance, lifetime earned and withdrawn (paise)."""
    wallet = await ledger.get_wallet(user.id)
    return ledger.wallet_summary(wallet)


@router.get("/transactions")
async def wallet_transactions(
    user: User = Depends(get_current_user),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Ledger rows for current user (newest first)."""
    limit, offset = paginate(limit, offset)
    rows, total = await ledger.list_transactions(user.id, limit, offset)
    out = [
        {
            "id": str(t.id),
            "type": t.type,
            "amount": t.amount,
            "status": t.status,
            "description": t.description,
            "reference_type": t.reference_type,
            "reference_id": t.reference_id,
            "created_at": t.created_at.isoformat(),
        }
        for t in rows
    ]
    return {"transactions": out, "limit": limit, "offset": offset, "total": total}


@router.get("/payout-methods")
async def list_payout_methods(user: User = Depends(get_current_user)):
    methods = await payouts_service.list_payout_methods(user.id)
    return {"payout_methods": [{"id": str(m.id), **m.model_dump(exclude={"id", "user_id"})} for m in methods]}


@router.post("/payout-methods", status_code=201)
async def add_payout_method(body: AddPayoutMethodRequest, user: User = Depends(get_current_user)):
    method = await payouts_service.add_payout_method(user.id, **body.model_dump())
    return {"payout_method": {"id": str(method.id), **method.model_dump(exclude={"id", "user_id"})}}


@router.get("/payout-requests")
async def my_payout_requests(user: User = Depends(get_current_user)):
    requests = await payouts_service.list_user_requests(user.id)
    return {"payout_requests": [payouts_service.serialize_request(p) for p in requests]}


@router.post("/payout-requests", status_code=201)
async def create_payout_request(body: PayoutRequestBody, user: User = Depends(get_current_user)):
    """Hold amount_paise from balance and open a pending payout request."""
    payout = await payouts_service.request_payout(user.id, body.amount_paise, body.payout_method_id)
    return {"payout_request": payouts_service.serialize_request(payout)}
