"""In-app notifications. Fire-and-forget: a failed notification never fails the caller."""

from beanie import PydanticObjectId

from app.core.logging import get_logger
from app.models.notification import Notification

log = get_logger(__name__)


async def notify(
    user_id: PydanticObjectId,
    title: str,
    message: str,
    type: str = "info",
    action_url: str | None = None,
) -> None:
    try:
        await Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            action_url=action_url,
        ).insert()
    except Exception as e:
        log.warning("notification_failed", user_id=str(user_id), title=title, error=str(e))


async def list_notifications(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[Notification]:
    return (
        await Notification.find(Notification.user_id == user_id)
        .sort(-Notification.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )


def format_inr(paise: int) -> str:
    return f"₹{paise // 100}.{paise % 100:02d}"
