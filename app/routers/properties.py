from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
import logging

from app.core.database import get_db
from app.core.errors import conflict_from_integrity_error
from app.core.permissions import (
    Capability, can_access_record, check_capability, is_management, require_capability, visible_agent_ids,
)
from app.core.security import get_current_user
from app.models import tables
from app.schemas import PropertyCreate, PropertyOut, PropertyReferralOut, PropertyUpdate, ReferRequest
from app.services import referrals
from app.services.imports.parser import ImportFileError
from app.services.imports.properties import PropertyImporter, generate_reference, load_property_context
from app.services.imports.uploads import parse_flag, read_upload, resolve_mode

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_visible_property(db: Session, property_id: int, user: tables.User) -> tables.Property:
    prop = db.query(tables.Property).filter(tables.Property.id == property_id).first()
    if not prop or not can_access_record(db, user, prop.agent_id):
        raise HTTPException(status_code=404, detail="Property not found")
    return prop


def _load_setup(db: Session, status_id: Optional[int], category_id: Optional[int]):
    """Status and category rows for the payload; 400 when either id is unknown."""
    status_row = category = None
    if status_id is not None:
        status_row = db.get(tables.PropertyStatus, status_id)
        if not status_row:
            raise HTTPException(status_code=400, detail="Invalid property status")
    if category_id is not None:
        category = db.get(tables.Category, category_id)
        if not category:
            raise HTTPException(status_code=400, detail="Invalid category")
    return status_row, category


def _resolve_agent(db: Session, agent_id: Optional[int]) -> Optional[tables.User]:
    if not agent_id:
        return None
    agent = db.get(tables.User, agent_id)
    if not agent:
        raise HTTPException(status_code=400, detail="Agent not found")
    return agent


# ===========================
# 1. IMPORT
# ===========================
@router.post("/import")
async def import_properties(
    file: UploadFile = File(...),
    dry_run_query: Optional[str] = Query(None, alias="dryRun"),
    dry_run_form: Optional[str] = Form(None, alias="dryRun"),
    mode_query: Optional[str] = Query(None, alias="mode"),
    mode_form: Optional[str] = Form(None, alias="mode"),
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.IMPORT_PROPERTIES)),
):
    dry_run = parse_flag(dry_run_query if dry_run_query is not None else dry_run_form, default=True)
    mode = resolve_mode(mode_query or mode_form)
    content = await read_upload(file)

    importer = PropertyImporter(await run_in_threadpool(load_property_context, db, current_user))
    try:
        if dry_run:
            result = await run_in_threadpool(importer.preview, db, file.filename, content)
        else:
            logger.info(f"Property import ({mode}) started by {current_user.email}: {file.filename}")
            result = await run_in_threadpool(importer.commit, db, file.filename, content, current_user, mode)
    except ImportFileError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "data": result.model_dump(by_alias=True)}


# ===========================
# 2. REFERRALS
# ===========================
@router.get("/referrals/pending")
def list_pending_referrals(db: Session = Depends(get_db), current_user: tables.User = Depends(get_current_user)):
    pending = referrals.pending_for(db, referrals.PROPERTY, current_user)
    return {"success": True, "data": [PropertyReferralOut.model_validate(r) for r in pending]}


@router.get("/referrals/pending/count")
def count_pending_referrals(db: Session = Depends(get_db), current_user: tables.User = Depends(get_current_user)):
    return {"success": True, "data": {"count": referrals.pending_count(db, referrals.PROPERTY, current_user)}}


def _transition(db: Session, action, referral_id: int, user: tables.User, message: str):
    try:
        referral = action(db, referrals.PROPERTY, referral_id, user)
        db.commit()
        db.refresh(referral)
        return {"success": True, "data": PropertyReferralOut.model_validate(referral), "message": message}
    except HTTPException:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error on property referral {referral_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.put("/referrals/{referral_id}/confirm")
def confirm_referral(
    referral_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    return _transition(db, referrals.confirm, referral_id, current_user, "Referral confirmed successfully")


@router.put("/referrals/{referral_id}/reject")
def reject_referral(
    referral_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    return _transition(db, referrals.reject, referral_id, current_user, "Referral rejected successfully")


@router.post("/{property_id}/refer", status_code=status.HTTP_201_CREATED)
def refer_property(
    property_id: int,
    payload: ReferRequest,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.REFER)),
):
    try:
        referral = referrals.refer(db, referrals.PROPERTY, property_id, payload.referred_to_agent_id, current_user)
        db.commit()
        db.refresh(referral)
        return {"success": True, "data": PropertyReferralOut.model_validate(referral), "message": "Property referred successfully"}
    except HTTPException:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error referring property {property_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.get("/{property_id}/referrals")
def list_property_referrals(
    property_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_PROPERTIES)),
):
    _get_visible_property(db, property_id, current_user)
    rows = referrals.history(db, referrals.PROPERTY, property_id)
    return {"success": True, "data": [PropertyReferralOut.model_validate(r) for r in rows]}


# ===========================
# 3. CRUD
# ===========================
@router.get("/")
def list_properties(
    status_id: Optional[int] = None,
    category_id: Optional[int] = None,
    agent_id: Optional[int] = None,
    property_type: Optional[str] = Query(None, pattern="^(sale|rent)$"),
    search: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_PROPERTIES)),
):
    query = db.query(tables.Property)

    allowed = visible_agent_ids(db, current_user)
    if allowed is not None:
        query = query.filter(tables.Property.agent_id.in_(allowed))
    if status_id:
        query = query.filter(tables.Property.status_id == status_id)
    if category_id:
        query = query.filter(tables.Property.category_id == category_id)
    if agent_id:
        query = query.filter(tables.Property.agent_id == agent_id)
    if property_type:
        query = query.filter(tables.Property.property_type == property_type)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            tables.Property.reference_number.ilike(pattern),
            tables.Property.location.ilike(pattern),
            tables.Property.building_name.ilike(pattern),
            tables.Property.owner_name.ilike(pattern),
        ))

    total = query.count()
    rows = query.order_by(tables.Property.id.desc()).offset(offset).limit(limit).all()
    return {"success": True, "data": [PropertyOut.model_validate(p) for p in rows], "total": total}


@router.get("/{property_id}")
def get_property(
    property_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_PROPERTIES)),
):
    return {"success": True, "data": PropertyOut.model_validate(_get_visible_property(db, property_id, current_user))}


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_property(
    payload: PropertyCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_PROPERTIES)),
):
    status_row, category = _load_setup(db, payload.status_id, payload.category_id)
    data = payload.model_dump()
    if not is_management(current_user):
        # Field roles own what they add; others need a management role
        check_capability(current_user, Capability.RECEIVE_REFERRALS)
        data["agent_id"] = current_user.id

    try:
        agent = _resolve_agent(db, data["agent_id"])
        prop = tables.Property(**data)
        prop.agent_name = agent.name if agent else None
        if prop.listing_date is None:
            prop.listing_date = date.today()
        if prop.closed_date is None and referrals.is_terminal_status(status_row):
            prop.closed_date = date.today()

        db.add(prop)
        db.flush()
        if not prop.reference_number:
            prop.reference_number = generate_reference(prop.property_type, category.code, prop.listing_date, prop.id)
        if agent:
            referrals.record_assignment(db, referrals.PROPERTY, prop, agent)
        db.commit()
        db.refresh(prop)

        logger.info(f"Property {prop.reference_number} created by {current_user.email}")
        return {"success": True, "data": PropertyOut.model_validate(prop), "message": "Property created successfully"}

    except HTTPException:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, unique_message="Reference number already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating property: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.put("/{property_id}")
def update_property(
    property_id: int,
    payload: PropertyUpdate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_PROPERTIES)),
):
    prop = _get_visible_property(db, property_id, current_user)
    changes = payload.model_dump(exclude_unset=True)
    reassigning = "agent_id" in changes and changes["agent_id"] != prop.agent_id
    if reassigning:
        check_capability(current_user, Capability.MANAGE_PROPERTIES)
    status_row, _ = _load_setup(db, changes.get("status_id"), changes.get("category_id"))

    try:
        agent = _resolve_agent(db, changes.get("agent_id")) if reassigning else None
        for field, value in changes.items():
            if field in ("status_id", "category_id", "location", "property_type") and value is None:
                continue
            setattr(prop, field, value)

        if reassigning:
            prop.agent_name = agent.name if agent else None
            if agent:
                referrals.record_assignment(db, referrals.PROPERTY, prop, agent)
                db.flush()
                referrals.apply_external_rule(db, referrals.PROPERTY, prop.id)

        if status_row is not None and "closed_date" not in changes:
            if referrals.is_terminal_status(status_row):
                prop.closed_date = prop.closed_date or date.today()
            else:
                prop.closed_date = None

        db.commit()
        db.refresh(prop)
        logger.info(f"Property {property_id} updated by {current_user.email}")
        return {"success": True, "data": PropertyOut.model_validate(prop), "message": "Property updated successfully"}

    except HTTPException:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, unique_message="Reference number already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error updating property {property_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.delete("/{property_id}")
def delete_property(
    property_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.DELETE_PROPERTIES)),
):
    prop = _get_visible_property(db, property_id, current_user)
    try:
        db.delete(prop)
        db.commit()
        logger.info(f"Property {property_id} deleted by {current_user.email}")
        return {"success": True, "message": "Property deleted successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, foreign_key_message="Cannot delete property - it is referenced by other records")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error deleting property {property_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")
