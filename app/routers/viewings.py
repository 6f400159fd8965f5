from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from app.core.database import get_db
from app.core.permissions import (
    MANAGEMENT_ROLES, REFERRAL_TARGET_ROLES, Capability, can_access_record,
    is_management, normalize_role, require_capability, visible_agent_ids,
)
from app.models import tables
from app.schemas import ViewingCreate, ViewingEdit, ViewingUpdateCreate, ViewingUpdateEdit, ViewingUpdateOut
from app.services import viewings as viewing_service
from app.services.notifications import notify_users

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_visible_viewing(db: Session, viewing_id: int, user: tables.User) -> tables.Viewing:
    viewing = db.query(tables.Viewing).filter(tables.Viewing.id == viewing_id).first()
    if not viewing or not can_access_record(db, user, viewing.agent_id):
        raise HTTPException(status_code=404, detail="Viewing not found")
    return viewing


def _parse_status(value: str) -> str:
    try:
        return viewing_service.parse_status(value).value
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _management_user_ids(db: Session, exclude_id: int):
    users = db.query(tables.User).filter(tables.User.is_active.is_(True)).all()
    return [u.id for u in users if normalize_role(u.role) in MANAGEMENT_ROLES and u.id != exclude_id]


# ===========================
# 1. VIEWINGS
# ===========================
@router.get("/")
def list_viewings(
    is_serious: Optional[bool] = None,
    property_id: Optional[int] = None,
    lead_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_VIEWINGS)),
):
    query = db.query(tables.Viewing)

    allowed = visible_agent_ids(db, current_user)
    if allowed is not None:
        query = query.filter(tables.Viewing.agent_id.in_(allowed))
    if is_serious is not None:
        query = query.filter(tables.Viewing.is_serious.is_(is_serious))
    if property_id:
        query = query.filter(tables.Viewing.property_id == property_id)
    if lead_id:
        query = query.filter(tables.Viewing.lead_id == lead_id)

    total = query.count()
    rows = query.order_by(tables.Viewing.viewing_date.desc(), tables.Viewing.id.desc()).offset(offset).limit(limit).all()
    return {"success": True, "data": [viewing_service.serialize_viewing(v) for v in rows], "total": total}


@router.get("/{viewing_id}")
def get_viewing(
    viewing_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_VIEWINGS)),
):
    viewing = _get_visible_viewing(db, viewing_id, current_user)
    return {"success": True, "data": viewing_service.serialize_viewing(viewing)}


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_viewing(
    payload: ViewingCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.CREATE_VIEWINGS)),
):
    # 1. Related records
    prop = db.query(tables.Property).filter(tables.Property.id == payload.property_id).first()
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")
    lead = db.query(tables.Lead).filter(tables.Lead.id == payload.lead_id).first()
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")

    # 2. Who runs the viewing
    if is_management(current_user):
        if not payload.agent_id:
            raise HTTPException(status_code=400, detail="agent_id is required")
        agent = db.query(tables.User).filter(tables.User.id == payload.agent_id).first()
        if not agent or normalize_role(agent.role) not in REFERRAL_TARGET_ROLES:
            raise HTTPException(status_code=400, detail="Viewings can only be assigned to agents or team leaders")
    else:
        if prop.agent_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You can only create viewings for properties assigned to you"
            )
        if payload.agent_id and payload.agent_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You can only create viewings for yourself"
            )
        agent = current_user

    # 3. Persist and notify
    try:
        viewing = tables.Viewing(**payload.model_dump(exclude={"agent_id"}), agent_id=agent.id, created_by=current_user.id)
        db.add(viewing)
        db.flush()

        notify_users(
            db,
            _management_user_ids(db, current_user.id),
            title="New Viewing Scheduled",
            message=f"{agent.name} has a viewing for {prop.reference_number or 'a property'} on {payload.viewing_date} at {payload.viewing_time}.",
            type="viewing",
            entity_type="viewing",
            entity_id=viewing.id,
        )
        db.commit()
        db.refresh(viewing)

        logger.info(f"Viewing {viewing.id} created by {current_user.email}")
        return {"success": True, "data": viewing_service.serialize_viewing(viewing), "message": "Viewing created successfully"}

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating viewing: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.put("/{viewing_id}")
def update_viewing(
    viewing_id: int,
    payload: ViewingEdit,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.CREATE_VIEWINGS)),
):
    viewing = _get_visible_viewing(db, viewing_id, current_user)
    changes = payload.model_dump(exclude_unset=True)

    if "agent_id" in changes and changes["agent_id"] != viewing.agent_id:
        if not is_management(current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        agent = db.query(tables.User).filter(tables.User.id == changes["agent_id"]).first()
        if not agent or normalize_role(agent.role) not in REFERRAL_TARGET_ROLES:
            raise HTTPException(status_code=400, detail="Viewings can only be assigned to agents or team leaders")

    try:
        for field, value in changes.items():
            if value is None and field in ("viewing_date", "viewing_time", "is_serious", "agent_id"):
                continue
            setattr(viewing, field, value)
        db.commit()
        db.refresh(viewing)
        logger.info(f"Viewing {viewing_id} updated by {current_user.email}")
        return {"success": True, "data": viewing_service.serialize_viewing(viewing), "message": "Viewing updated successfully"}
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error updating viewing {viewing_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.delete("/{viewing_id}")
def delete_viewing(
    viewing_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.DELETE_VIEWINGS)),
):
    viewing = _get_visible_viewing(db, viewing_id, current_user)
    try:
        db.delete(viewing)
        db.commit()
        logger.info(f"Viewing {viewing_id} deleted by {current_user.email}")
        return {"success": True, "message": "Viewing deleted successfully"}
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error deleting viewing {viewing_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


# ===========================
# 2. TIMELINE
# ===========================
@router.get("/{viewing_id}/updates")
def list_updates(
    viewing_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_VIEWINGS)),
):
    viewing = _get_visible_viewing(db, viewing_id, current_user)
    updates = viewing_service.timeline(viewing)
    return {
        "success": True,
        "data": [ViewingUpdateOut.model_validate(u) for u in updates],
        "current_status": viewing_service.current_status(viewing),
    }


@router.post("/{viewing_id}/updates", status_code=status.HTTP_201_CREATED)
def add_update(
    viewing_id: int,
    payload: ViewingUpdateCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.CREATE_VIEWINGS)),
):
    viewing = _get_visible_viewing(db, viewing_id, current_user)
    update_status = _parse_status(payload.status)

    try:
        update = tables.ViewingUpdate(
            viewing_id=viewing.id,
            status=update_status,
            update_text=payload.update_text,
            update_date=payload.update_date or date.today(),
            created_by=current_user.id,
        )
        db.add(update)
        db.commit()
        db.refresh(update)
        logger.info(f"Viewing {viewing_id} moved to '{update_status}' by {current_user.email}")
        return {"success": True, "data": ViewingUpdateOut.model_validate(update), "message": "Update added successfully"}
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error adding update to viewing {viewing_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.put("/{viewing_id}/updates/{update_id}")
def edit_update(
    viewing_id: int,
    update_id: int,
    payload: ViewingUpdateEdit,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.CREATE_VIEWINGS)),
):
    _get_visible_viewing(db, viewing_id, current_user)
    update = db.query(tables.ViewingUpdate).filter(
        tables.ViewingUpdate.id == update_id,
        tables.ViewingUpdate.viewing_id == viewing_id,
    ).first()
    if not update:
        raise HTTPException(status_code=404, detail="Update not found")
    if not viewing_service.can_edit_update(current_user, update):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only edit your own updates")

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("status") is not None:
        changes["status"] = _parse_status(changes["status"])

    try:
        for field, value in changes.items():
            if value is not None:
                setattr(update, field, value)
        db.commit()
        db.refresh(update)
        logger.info(f"Viewing update {update_id} edited by {current_user.email}")
        return {"success": True, "data": ViewingUpdateOut.model_validate(update), "message": "Update edited successfully"}
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error editing viewing update {update_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")
