from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from app.core.database import get_db
from app.core.errors import conflict_from_integrity_error
from app.core.permissions import Capability, require_capability
from app.core.security import get_current_user
from app.models import tables
from app.schemas import PropertyStatusCreate, PropertyStatusOut
from app.services.referrals import is_terminal_status

router = APIRouter()
logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "Status with this name or code already exists"
IN_USE_MESSAGE = "Cannot delete status - it is being used by existing properties"


def _out(row: tables.PropertyStatus) -> PropertyStatusOut:
    out = PropertyStatusOut.model_validate(row)
    out.is_terminal = is_terminal_status(row)
    return out


def _get_or_404(db: Session, status_id: int) -> tables.PropertyStatus:
    row = db.query(tables.PropertyStatus).filter(tables.PropertyStatus.id == status_id).first()
    if not row:
        raise HTTPException(status_code=404, detail="Status not found")
    return row


@router.get("/")
def list_statuses(db: Session = Depends(get_db), current_user: tables.User = Depends(get_current_user)):
    rows = db.query(tables.PropertyStatus).order_by(tables.PropertyStatus.name).all()
    return {"success": True, "data": [_out(row) for row in rows]}


@router.get("/{status_id}")
def get_status(status_id: int, db: Session = Depends(get_db), current_user: tables.User = Depends(get_current_user)):
    return {"success": True, "data": _out(_get_or_404(db, status_id))}


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_status(
    payload: PropertyStatusCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_PROPERTY_SETUP)),
):
    if not payload.name:
        raise HTTPException(status_code=400, detail="Status name is required")
    if not payload.code:
        raise HTTPException(status_code=400, detail="Status code is required")
    try:
        row = tables.PropertyStatus(
            name=payload.name,
            code=payload.code.lower(),
            color=payload.color or "#6B7280",
            description=payload.description or "",
            is_active=True if payload.is_active is None else payload.is_active,
            can_be_referred=True if payload.can_be_referred is None else payload.can_be_referred,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        logger.info(f"Property status '{row.name}' created by {current_user.email}")
        return {"success": True, "data": _out(row), "message": "Status created successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, unique_message=DUPLICATE_MESSAGE)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating status: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.put("/{status_id}")
def update_status(
    status_id: int,
    payload: PropertyStatusCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_PROPERTY_SETUP)),
):
    row = _get_or_404(db, status_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "code" in changes:
        changes["code"] = changes["code"].lower()
    try:
        for field, value in changes.items():
            setattr(row, field, value)
        db.commit()
        db.refresh(row)
        logger.info(f"Property status {status_id} updated by {current_user.email}")
        return {"success": True, "data": _out(row), "message": "Status updated successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, unique_message=DUPLICATE_MESSAGE)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error updating status {status_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.delete("/{status_id}")
def delete_status(
    status_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_PROPERTY_SETUP)),
):
    row = _get_or_404(db, status_id)
    try:
        db.delete(row)
        db.commit()
        logger.info(f"Property status {status_id} deleted by {current_user.email}")
        return {"success": True, "message": "Status deleted successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, foreign_key_message=IN_USE_MESSAGE)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error deleting status {status_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")
