# app/services/notifications.py
from typing import Iterable, Optional

from sqlalchemy.orm import Session
import logging

from app.models import tables

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    user_id: int,
    title: str,
    message: str,
    type: str = "info",
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
) -> tables.Notification:
    """Queue a notification on the session. The caller owns the commit."""
    notification = tables.Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        entity_type=entity_type,
        entity_id=entity_id,
        is_read=False,
    )
    db.add(notification)
    logger.info(f"Notification '{title}' queued for user {user_id}")
    return notification


def notify_users(db: Session, user_ids: Iterable[int], title: str, message: str, **kwargs):
    return [create_notification(db, user_id, title, message, **kwargs) for user_id in set(user_ids)]
