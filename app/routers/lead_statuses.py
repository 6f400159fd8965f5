from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from app.core.database import get_db
from app.core.errors import conflict_from_integrity_error
from app.core.permissions import Capability, require_capability
from app.core.security import get_current_user
from app.models import tables
from app.schemas import LeadStatusCreate, LeadStatusOut, LeadStatusUpdate

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#6B7280"
DUPLICATE_MESSAGE = "Lead status with this name or code already exists"
IN_USE_MESSAGE = "Cannot delete lead status - it is being used by existing leads"


def _get_or_404(db: Session, status_id: int) -> tables.LeadStatus:
    lead_status = db.query(tables.LeadStatus).filter(tables.LeadStatus.id == status_id).first()
    if not lead_status:
        raise HTTPException(status_code=404, detail="Lead status not found")
    return lead_status


# ===========================
# 1. LIST / GET
# ===========================
@router.get("/")
def list_lead_statuses(
    active_only: bool = False,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    query = db.query(tables.LeadStatus)
    if active_only:
        query = query.filter(tables.LeadStatus.is_active.is_(True))
    statuses = query.order_by(tables.LeadStatus.status_name).all()
    return {"success": True, "data": [LeadStatusOut.model_validate(s) for s in statuses]}


@router.get("/{status_id}")
def get_lead_status(
    status_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    return {"success": True, "data": LeadStatusOut.model_validate(_get_or_404(db, status_id))}


# ===========================
# 2. CREATE
# ===========================
@router.post("/", status_code=status.HTTP_201_CREATED)
def create_lead_status(
    payload: LeadStatusCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_LEAD_STATUSES)),
):
    if not payload.status_name:
        raise HTTPException(status_code=400, detail="Status name is required")
    if not payload.code:
        raise HTTPException(status_code=400, detail="Status code is required")

    try:
        lead_status = tables.LeadStatus(
            status_name=payload.status_name,
            code=payload.code.upper(),
            color=payload.color or DEFAULT_COLOR,
            description=payload.description or "",
            is_active=True if payload.is_active is None else payload.is_active,
            can_be_referred=True if payload.can_be_referred is None else payload.can_be_referred,
        )
        db.add(lead_status)
        db.commit()
        db.refresh(lead_status)

        logger.info(f"Lead status '{lead_status.status_name}' created by {current_user.email}")
        return {
            "success": True,
            "data": LeadStatusOut.model_validate(lead_status),
            "message": "Lead status created successfully",
        }

    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Lead status create conflict: {e}")
        raise conflict_from_integrity_error(e, unique_message=DUPLICATE_MESSAGE)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating lead status: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


# ===========================
# 3. UPDATE
# ===========================
@router.put("/{status_id}")
def update_lead_status(
    status_id: int,
    payload: LeadStatusUpdate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_LEAD_STATUSES)),
):
    try:
        lead_status = _get_or_404(db, status_id)

        # Omitted fields keep their current values
        changes = payload.model_dump(exclude_unset=True)
        if "status_name" in changes and not changes["status_name"]:
            raise HTTPException(status_code=400, detail="Status name is required")
        if "code" in changes:
            if not changes["code"]:
                raise HTTPException(status_code=400, detail="Status code is required")
            changes["code"] = changes["code"].upper()
        if "color" in changes and not changes["color"]:
            changes["color"] = DEFAULT_COLOR
        for flag in ("is_active", "can_be_referred"):
            if flag in changes and changes[flag] is None:
                changes[flag] = True

        for field, value in changes.items():
            setattr(lead_status, field, value)

        db.commit()
        db.refresh(lead_status)

        logger.info(f"Lead status {status_id} updated by {current_user.email}")
        return {
            "success": True,
            "data": LeadStatusOut.model_validate(lead_status),
            "message": "Lead status updated successfully",
        }

    except HTTPException:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Lead status update conflict: {e}")
        raise conflict_from_integrity_error(e, unique_message=DUPLICATE_MESSAGE)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error updating lead status {status_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


# ===========================
# 4. DELETE
# ===========================
@router.delete("/{status_id}")
def delete_lead_status(
    status_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_LEAD_STATUSES)),
):
    try:
        lead_status = _get_or_404(db, status_id)
        db.delete(lead_status)
        db.commit()

        logger.info(f"Lead status {status_id} deleted by {current_user.email}")
        return {"success": True, "message": "Lead status deleted successfully"}

    except HTTPException:
        raise
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Lead status {status_id} still referenced: {e}")
        raise conflict_from_integrity_error(e, foreign_key_message=IN_USE_MESSAGE)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error deleting lead status {status_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")
