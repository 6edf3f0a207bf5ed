from fastapi import APIRouter, Depends, Query

from app.core.pagination import paginate
from app.deps import get_current_user
from app.models.user import User
from app.services.notifications import list_notifications

router = APIRouter()


@router.get("")
async def my_notifications(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """In-app notifications for current user (newest first)."""
    limit, offset = paginate(limit, offset)
    rows = await list_notifications(user.id, limit, offset)
    return {
        "notifications": [
            {
                "id": str(n.id),
                "title": n.title,
                "message": n.message,
                "type": n.type,
                "is_read": n.is_read,
                "action_url": n.action_url,
                "created_at": n.created_at.isoformat(),
            }
            for n in rows
        ]
    }
