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
from app.schemas import LeadCreate, LeadOut, LeadReferralOut, LeadUpdate, ReferRequest
from app.services import referrals
from app.services.imports.leads import LeadImporter, load_lead_context
from app.services.imports.parser import ImportFileError
from app.services.imports.uploads import parse_flag, read_upload, resolve_mode

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_visible_lead(db: Session, lead_id: int, user: tables.User) -> tables.Lead:
    lead = db.query(tables.Lead).filter(tables.Lead.id == lead_id).first()
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    if not can_access_record(db, user, lead.agent_id):
        # Same answer as a missing lead
        raise HTTPException(status_code=404, detail="Lead not found")
    return lead


def _check_references(db: Session, status_id: Optional[int], source_id: Optional[int]):
    if status_id is not None and not db.get(tables.LeadStatus, status_id):
        raise HTTPException(status_code=400, detail="Invalid lead status")
    if source_id is not None and not db.get(tables.ReferenceSource, source_id):
        raise HTTPException(status_code=400, detail="Invalid reference source")


# ===========================
# 1. IMPORT
# ===========================
@router.post("/import")
async def import_leads(
    file: UploadFile = File(...),
    dry_run_query: Optional[str] = Query(None, alias="dryRun"),
    dry_run_form: Optional[str] = Form(None, alias="dryRun"),
    mode_query: Optional[str] = Query(None, alias="mode"),
    mode_form: Optional[str] = Form(None, alias="mode"),
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.IMPORT_LEADS)),
):
    dry_run = parse_flag(dry_run_query if dry_run_query is not None else dry_run_form, default=True)
    mode = resolve_mode(mode_query or mode_form)
    content = await read_upload(file)

    importer = LeadImporter(await run_in_threadpool(load_lead_context, db, current_user))
    try:
        if dry_run:
            result = await run_in_threadpool(importer.preview, db, file.filename, content)
        else:
            logger.info(f"Lead import ({mode}) started by {current_user.email}: {file.filename}")
            result = await run_in_threadpool(importer.commit, db, file.filename, content, current_user, mode)
    except ImportFileError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, "data": result.model_dump(by_alias=True)}


# ===========================
# 2. REFERRALS
# ===========================
@router.get("/referrals/pending")
def list_pending_referrals(db: Session = Depends(get_db), current_user: tables.User = Depends(get_current_user)):
    pending = referrals.pending_for(db, referrals.LEAD, current_user)
    return {"success": True, "data": [LeadReferralOut.model_validate(r) for r in pending]}


@router.get("/referrals/pending/count")
def count_pending_referrals(db: Session = Depends(get_db), current_user: tables.User = Depends(get_current_user)):
    return {"success": True, "data": {"count": referrals.pending_count(db, referrals.LEAD, current_user)}}


@router.put("/referrals/{referral_id}/confirm")
def confirm_referral(
    referral_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    try:
        referral = referrals.confirm(db, referrals.LEAD, referral_id, current_user)
        db.commit()
        db.refresh(referral)
        return {"success": True, "data": LeadReferralOut.model_validate(referral), "message": "Referral confirmed successfully"}
    except HTTPException:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error confirming lead referral {referral_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.put("/referrals/{referral_id}/reject")
def reject_referral(
    referral_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    try:
        referral = referrals.reject(db, referrals.LEAD, referral_id, current_user)
        db.commit()
        db.refresh(referral)
        return {"success": True, "data": LeadReferralOut.model_validate(referral), "message": "Referral rejected successfully"}
    except HTTPException:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error rejecting lead referral {referral_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.post("/{lead_id}/refer", status_code=status.HTTP_201_CREATED)
def refer_lead(
    lead_id: int,
    payload: ReferRequest,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.REFER)),
):
    try:
        referral = referrals.refer(db, referrals.LEAD, lead_id, payload.referred_to_agent_id, current_user)
        db.commit()
        db.refresh(referral)
        return {"success": True, "data": LeadReferralOut.model_validate(referral), "message": "Lead referred successfully"}
    except HTTPException:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error referring lead {lead_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.get("/{lead_id}/referrals")
def list_lead_referrals(
    lead_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_LEADS)),
):
    _get_visible_lead(db, lead_id, current_user)
    rows = referrals.history(db, referrals.LEAD, lead_id)
    return {"success": True, "data": [LeadReferralOut.model_validate(r) for r in rows]}


# ===========================
# 3. CRUD
# ===========================
@router.get("/")
def list_leads(
    status_id: Optional[int] = None,
    agent_id: Optional[int] = None,
    search: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_LEADS)),
):
    query = db.query(tables.Lead)

    allowed = visible_agent_ids(db, current_user)
    if allowed is not None:
        query = query.filter(tables.Lead.agent_id.in_(allowed))
    if status_id:
        query = query.filter(tables.Lead.status_id == status_id)
    if agent_id:
        query = query.filter(tables.Lead.agent_id == agent_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            tables.Lead.customer_name.ilike(pattern),
            tables.Lead.phone_number.ilike(pattern),
        ))

    total = query.count()
    leads = query.order_by(tables.Lead.date.desc(), tables.Lead.id.desc()).offset(offset).limit(limit).all()
    return {"success": True, "data": [LeadOut.model_validate(l) for l in leads], "total": total}


@router.get("/{lead_id}")
def get_lead(
    lead_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_LEADS)),
):
    return {"success": True, "data": LeadOut.model_validate(_get_visible_lead(db, lead_id, current_user))}


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_lead(
    payload: LeadCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_LEADS)),
):
    _check_references(db, payload.status_id, payload.reference_source_id)
    data = payload.model_dump()
    if not is_management(current_user):
        # Field roles always own what they add
        data["agent_id"] = current_user.id

    try:
        agent = db.get(tables.User, data["agent_id"]) if data["agent_id"] else None
        if data["agent_id"] and not agent:
            raise HTTPException(status_code=400, detail="Agent not found")

        lead = tables.Lead(**data, added_by_id=current_user.id)
        if lead.date is None:
            lead.date = date.today()
        if agent:
            lead.agent_name = agent.name
        db.add(lead)
        db.flush()
        if agent or lead.agent_name:
            referrals.record_assignment(db, referrals.LEAD, lead, agent, lead.agent_name)
        db.commit()
        db.refresh(lead)

        logger.info(f"Lead {lead.id} created by {current_user.email}")
        return {"success": True, "data": LeadOut.model_validate(lead), "message": "Lead created successfully"}

    except HTTPException:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, unique_message="Lead already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating lead: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.put("/{lead_id}")
def update_lead(
    lead_id: int,
    payload: LeadUpdate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_LEADS)),
):
    lead = _get_visible_lead(db, lead_id, current_user)
    changes = payload.model_dump(exclude_unset=True)

    if "agent_id" in changes and changes["agent_id"] != lead.agent_id:
        # Reassignment outside the referral workflow is a management action
        check_capability(current_user, Capability.MANAGE_LEADS)
    _check_references(db, changes.get("status_id"), changes.get("reference_source_id"))

    try:
        reassigned_to = None
        if "agent_id" in changes and changes["agent_id"] != lead.agent_id:
            reassigned_to = db.get(tables.User, changes["agent_id"]) if changes["agent_id"] else None
            if changes["agent_id"] and not reassigned_to:
                raise HTTPException(status_code=400, detail="Agent not found")
            changes["agent_name"] = reassigned_to.name if reassigned_to else changes.get("agent_name")

        for field, value in changes.items():
            if field == "status_id" and value is None:
                continue
            setattr(lead, field, value)

        if reassigned_to is not None:
            referrals.record_assignment(db, referrals.LEAD, lead, reassigned_to)
            db.flush()
            referrals.apply_external_rule(db, referrals.LEAD, lead.id)

        db.commit()
        db.refresh(lead)
        logger.info(f"Lead {lead_id} updated by {current_user.email}")
        return {"success": True, "data": LeadOut.model_validate(lead), "message": "Lead updated successfully"}

    except HTTPException:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error updating lead {lead_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.delete("/{lead_id}")
def delete_lead(
    lead_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.DELETE_LEADS)),
):
    lead = _get_visible_lead(db, lead_id, current_user)
    try:
        db.delete(lead)
        db.commit()
        logger.info(f"Lead {lead_id} deleted by {current_user.email}")
        return {"success": True, "message": "Lead deleted successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, foreign_key_message="Cannot delete lead - it is referenced by other records")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error deleting lead {lead_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")
