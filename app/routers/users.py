from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from app.core.config import settings
from app.core.database import get_db
from app.core.errors import conflict_from_integrity_error
from app.core.permissions import (
    Capability, Role, check_capability, has_capability, normalize_role, require_capability,
)
from app.core.security import get_current_user, get_password_hash
from app.models import tables
from app.schemas import TeamAssignRequest, UserCreate, UserDocumentOut, UserOut, UserUpdate
from app.utils.storage import remove_file, upload_file

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_user_or_404(db: Session, user_id: int) -> tables.User:
    user = db.query(tables.User).filter(tables.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _valid_role(value: str) -> str:
    role = normalize_role(value)
    if role is None:
        allowed = ", ".join(r.value for r in Role)
        raise HTTPException(status_code=400, detail=f"Invalid role. Allowed: {allowed}")
    return role.value


# ===========================
# 1. USERS
# ===========================
@router.get("/")
def list_users(
    role: Optional[str] = None,
    active_only: bool = True,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_USERS)),
):
    query = db.query(tables.User)
    if role:
        query = query.filter(tables.User.role == _valid_role(role))
    if active_only:
        query = query.filter(tables.User.is_active.is_(True))
    return {"success": True, "data": [UserOut.model_validate(u) for u in query.order_by(tables.User.name).all()]}


@router.get("/agents")
def list_referral_targets(db: Session = Depends(get_db), current_user: tables.User = Depends(get_current_user)):
    """Agents and team leaders, for referral pickers."""
    users = db.query(tables.User).filter(
        tables.User.is_active.is_(True),
        tables.User.role.in_([Role.AGENT.value, Role.TEAM_LEADER.value]),
    ).order_by(tables.User.name).all()
    return {"success": True, "data": [UserOut.model_validate(u) for u in users]}


@router.get("/{user_id}")
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    if user_id != current_user.id:
        check_capability(current_user, Capability.VIEW_USERS)
    return {"success": True, "data": UserOut.model_validate(_get_user_or_404(db, user_id))}


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_USERS)),
):
    try:
        user = tables.User(
            name=payload.name,
            email=payload.email,
            role=_valid_role(payload.role),
            phone=payload.phone,
            location=payload.location,
            password_hash=get_password_hash(payload.password),
            is_active=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"User {user.email} ({user.role}) created by {current_user.email}")
        return {"success": True, "data": UserOut.model_validate(user), "message": "User created successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, unique_message="A user with this email already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating user: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.put("/{user_id}")
def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    is_admin = has_capability(current_user, Capability.MANAGE_USERS)
    if user_id != current_user.id and not is_admin:
        raise HTTPException(status_code=403, detail="Insufficient permissions")

    user = _get_user_or_404(db, user_id)
    changes = payload.model_dump(exclude_unset=True)
    if not is_admin and ({"role", "is_active"} & set(changes)):
        raise HTTPException(status_code=403, detail="Only administrators can change roles or activation")

    try:
        if "role" in changes and changes["role"] is not None:
            changes["role"] = _valid_role(changes["role"])
        password = changes.pop("password", None)
        if password:
            user.password_hash = get_password_hash(password)
        for field, value in changes.items():
            if value is not None:
                setattr(user, field, value)
        db.commit()
        db.refresh(user)
        logger.info(f"User {user_id} updated by {current_user.email}")
        return {"success": True, "data": UserOut.model_validate(user), "message": "User updated successfully"}
    except IntegrityError as e:
        db.rollback()
        raise conflict_from_integrity_error(e, unique_message="A user with this email already exists")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error updating user {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Database error occurred")


@router.delete("/{user_id}")
def deactivate_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_USERS)),
):
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    user = _get_user_or_404(db, user_id)
    user.is_active = False
    db.query(tables.TeamAssignment).filter(
        (tables.TeamAssignment.agent_id == user_id) | (tables.TeamAssignment.team_leader_id == user_id)
    ).update({tables.TeamAssignment.is_active: False}, synchronize_session=False)
    db.commit()
    logger.info(f"User {user_id} deactivated by {current_user.email}")
    return {"success": True, "message": "User deactivated successfully"}


# ===========================
# 2. TEAMS
# ===========================
@router.get("/{leader_id}/agents")
def list_team_agents(
    leader_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    if leader_id != current_user.id:
        check_capability(current_user, Capability.VIEW_USERS)
    assignments = db.query(tables.TeamAssignment).filter(
        tables.TeamAssignment.team_leader_id == leader_id,
        tables.TeamAssignment.is_active.is_(True),
    ).all()
    return {"success": True, "data": [UserOut.model_validate(a.agent) for a in assignments]}


@router.post("/{leader_id}/agents", status_code=status.HTTP_201_CREATED)
def assign_agent(
    leader_id: int,
    payload: TeamAssignRequest,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_TEAMS)),
):
    leader = _get_user_or_404(db, leader_id)
    agent = _get_user_or_404(db, payload.agent_id)
    if normalize_role(leader.role) != Role.TEAM_LEADER:
        raise HTTPException(status_code=400, detail="Target user is not a team leader")
    if normalize_role(agent.role) != Role.AGENT:
        raise HTTPException(status_code=400, detail="Only agents can be assigned to a team")

    # An agent belongs to at most one active team
    current = db.query(tables.TeamAssignment).filter(
        tables.TeamAssignment.agent_id == agent.id,
        tables.TeamAssignment.is_active.is_(True),
    ).first()
    if current and current.team_leader_id != leader.id:
        raise HTTPException(status_code=409, detail="Agent is already assigned to another team leader")
    if current:
        return {"success": True, "message": "Agent already assigned to this team leader"}

    existing = db.query(tables.TeamAssignment).filter(
        tables.TeamAssignment.agent_id == agent.id,
        tables.TeamAssignment.team_leader_id == leader.id,
    ).first()
    if existing:
        existing.is_active = True
        existing.assigned_by = current_user.id
    else:
        db.add(tables.TeamAssignment(
            team_leader_id=leader.id, agent_id=agent.id, assigned_by=current_user.id, is_active=True,
        ))
    db.commit()
    logger.info(f"Agent {agent.id} assigned to team leader {leader.id} by {current_user.email}")
    return {"success": True, "message": "Agent assigned successfully"}


@router.delete("/{leader_id}/agents/{agent_id}")
def unassign_agent(
    leader_id: int,
    agent_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.MANAGE_TEAMS)),
):
    assignment = db.query(tables.TeamAssignment).filter(
        tables.TeamAssignment.team_leader_id == leader_id,
        tables.TeamAssignment.agent_id == agent_id,
        tables.TeamAssignment.is_active.is_(True),
    ).first()
    if not assignment:
        raise HTTPException(status_code=404, detail="Team assignment not found")
    assignment.is_active = False
    db.commit()
    logger.info(f"Agent {agent_id} removed from team leader {leader_id} by {current_user.email}")
    return {"success": True, "message": "Agent removed from team successfully"}


# ===========================
# 3. DOCUMENTS
# ===========================
def _check_document_access(current_user: tables.User, user_id: int):
    if user_id != current_user.id:
        check_capability(current_user, Capability.MANAGE_USERS)


@router.get("/{user_id}/documents")
def list_documents(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    _check_document_access(current_user, user_id)
    docs = db.query(tables.UserDocument).filter(
        tables.UserDocument.user_id == user_id
    ).order_by(tables.UserDocument.created_at.desc()).all()
    return {"success": True, "data": [UserDocumentOut.model_validate(d) for d in docs]}


@router.post("/{user_id}/documents", status_code=status.HTTP_201_CREATED)
async def upload_document(
    user_id: int,
    document_name: str = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    _check_document_access(current_user, user_id)
    _get_user_or_404(db, user_id)

    stored = await upload_file(file, settings.documents_bucket, folder=f"user-{user_id}")
    doc = tables.UserDocument(
        user_id=user_id,
        document_name=document_name.strip() or file.filename,
        file_name=stored.path,
        file_url=stored.url,
        mime_type=stored.content_type,
        file_size=stored.size,
        uploaded_by=current_user.id,
    )
    db.add(doc)
    db.commit()
    db.refresh(doc)
    logger.info(f"Document {doc.id} uploaded for user {user_id} by {current_user.email}")
    return {"success": True, "data": UserDocumentOut.model_validate(doc), "message": "Document uploaded successfully"}


@router.delete("/{user_id}/documents/{document_id}")
def delete_document(
    user_id: int,
    document_id: int,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(get_current_user),
):
    _check_document_access(current_user, user_id)
    doc = db.query(tables.UserDocument).filter(
        tables.UserDocument.id == document_id,
        tables.UserDocument.user_id == user_id,
    ).first()
    if not doc:
        raise HTTPException(status_code=404, detail="Document not found")
    path = doc.file_name
    db.delete(doc)
    db.commit()
    remove_file(settings.documents_bucket, path)
    logger.info(f"Document {document_id} of user {user_id} deleted by {current_user.email}")
    return {"success": True, "message": "Document deleted successfully"}
