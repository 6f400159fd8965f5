from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from app.core.database import get_db
from app.core.security import get_current_user
from app.models import tables
from app.schemas import NotificationOut

router = APIRouter()
logger = logging.getLogger(__name__)


def _own_notification(db: Session, notification_id: int, user: tables.User) -> tables.Notification:
    notification = db.query(tables.Notification).filter(
        tables.Notification.id == notification_id,
        tables.Notification.user_id == user.id,
    ).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification


@router.get("/")
def list_notifications(
    limit: int = Query(20, ge=1, le=50),
    offset: int = Query(0, ge=0),
    unread_only: bool = False,
    entity_type: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    query = db.query(tables.Notification).filter(tables.Notification.user_id == current_user.id)
    if unread_only:
        query = query.filter(tables.Notification.is_read.is_(False))
    if entity_type:
        query = query.filter(tables.Notification.entity_type == entity_type)

    total = query.count()
    rows = query.order_by(tables.Notification.id.desc()).offset(offset).limit(limit).all()
    return {"success": True, "data": [NotificationOut.model_validate(n) for n in rows], "total": total}


@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), current_user: tables.User = Depends(get_current_user)):
    count = db.query(tables.Notification).filter(
        tables.Notification.user_id == current_user.id,
        tables.Notification.is_read.is_(False),
    ).count()
    return {"success": True, "data": {"count": count}}


@router.put("/read-all")
def mark_all_read(db: Session = Depends(get_db), current_user: tables.User = Depends(get_current_user)):
    try:
        updated = db.query(tables.Notification).filter(
            tables.Notification.user_id == current_user.id,
            tables.Notification.is_read.is_(False),
        ).update({tables.Notification.is_read: True}, synchronize_session=False)
        db.commit()
        return {"success": True, "data": {"updated": updated}, "message": "All notifications marked as read"}
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error marking notifications read for user {current_user.id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.put("/{notification_id}/read")
def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    notification = _own_notification(db, notification_id, current_user)
    try:
        notification.is_read = True
        db.commit()
        db.refresh(notification)
        return {"success": True, "data": NotificationOut.model_validate(notification)}
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error marking notification {notification_id} read: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    notification = _own_notification(db, notification_id, current_user)
    try:
        db.delete(notification)
        db.commit()
        return {"success": True, "message": "Notification deleted successfully"}
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error deleting notification {notification_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")
