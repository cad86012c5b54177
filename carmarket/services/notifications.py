"""
Notification helper used by every workflow that tells a user something.
"""
from typing import Optional

from sqlalchemy.orm import Session
import structlog

from ..models.models import Notification


log = structlog.get_logger(__name__)


def notify(
    db: Session,
    user_id,
    title: str,
    message: str,
    notification_type: str = "default",
    link: Optional[str] = None,
) -> Notification:
    """
    Stage a notification row for user_id.
    The caller commits, so the notification lands atomically with the
    state change that caused it.
    """
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=notification_type,
        link=link,
        is_read=False,
    )
    db.add(notification)
    log.info("notification_staged", user_id=str(user_id), type=notification_type)
    return notification
