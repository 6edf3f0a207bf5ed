from datetime import datetime
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import BaseModel, Field

LedgerOp = Literal["credit", "hold", "release", "settle"]


class WalletHold(BaseModel):
    """Funds reserved for a payout request: already out of balance, not yet withdrawn."""
    txn_id: PydanticObjectId
    amount: int
    reference_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class JournalEntry(BaseModel):
    """Ledger operation applied to the wallet whose transaction row is not yet written/marked.

    Pushed in the same atomic update that changes the totals, removed once the
    wallet_transactions side is done. Anything left here is finished by flush_journal.
    """
    entry_id: PydanticObjectId = Field(default_factory=PydanticObjectId)
    op: LedgerOp
    txn_id: PydanticObjectId
    amount: int
    description: str = ""
    reference_type: str | None = None
    reference_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Wallet(Document):
    """Per-user balances in paise. Only app.services.ledger writes these fields.

    Invariants: balance >= 0 and total_earned == balance + total_withdrawn + held.
    """
    user_id: Indexed(PydanticObjectId, unique=True)
    balance: int = 0
    total_earned: int = 0
    total_withdrawn: int = 0
    held: int = 0
    holds: list[WalletHold] = Field(default_factory=list)
    journal: list[JournalEntry] = Field(default_factory=list)
    # txn ids of every credit and hold ever applied; the update filter refuses a repeat.
    applied_txn_ids: list[PydanticObjectId] = Field(default_factory=list)
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "wallets"
        indexes = [[("journal.created_at", 1)], [("holds.created_at", 1)]]
