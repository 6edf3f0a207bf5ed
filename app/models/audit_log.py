from datetime import datetime
from typing import Any

from beanie import Document
from pydantic import Field


class AuditLog(Document):
    """Audit trail for money-moving and attribution events."""
    user_id: str | None = None  # subject of the event; None for system events
    actor_id: str | None = None  # admin who acted, when not the subject
    event_type: str  # commission_granted, self_referral_blocked, payout_rejected, ...
    entity_type: str  # purchase, referral, payout_request, wallet
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("entity_type", 1), ("entity_id", 1)],
            [("event_type", 1), ("created_at", -1)],
        ]
