"""
Referral workflow shared by leads and properties.

A referral starts ``pending`` and the target agent moves it to ``confirmed``
(assignment transfers) or ``rejected`` (assignment untouched). Both are final.
Functions here flush but never commit; routers own the transaction.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Type

from fastapi import HTTPException, status
from sqlalchemy.orm import Session
import logging

from app.core.permissions import (
    REFERRAL_TARGET_ROLES, Role, is_management, normalize_role,
)
from app.models import tables
from app.services.notifications import create_notification

logger = logging.getLogger(__name__)

EXTERNAL_AFTER = timedelta(days=30)
TERMINAL_PROPERTY_STATUSES = frozenset(["sold", "rented", "closed"])


class ReferralStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ReferralKind:
    label: str
    record_model: Type
    referral_model: Type
    record_fk: str
    plural: str

    @property
    def title(self) -> str:
        return self.label.capitalize()

    @property
    def notification_type(self) -> str:
        return f"{self.label}_referral"


LEAD = ReferralKind("lead", tables.Lead, tables.LeadReferral, "lead_id", "leads")
PROPERTY = ReferralKind("property", tables.Property, tables.PropertyReferral, "property_id", "properties")


def is_terminal_status(status_row) -> bool:
    if status_row is None:
        return False
    return (
        (status_row.code or "").lower() in TERMINAL_PROPERTY_STATUSES
        or (getattr(status_row, "name", "") or "").lower() in TERMINAL_PROPERTY_STATUSES
    )


def _status_label(status_row) -> str:
    return getattr(status_row, "status_name", None) or getattr(status_row, "name", "")


def can_be_referred(kind: ReferralKind, record) -> bool:
    status_row = record.status
    if status_row is None:
        return True
    if kind is PROPERTY and is_terminal_status(status_row):
        return False
    return bool(status_row.can_be_referred)


def mark_external(referrals: List) -> List:
    """
    Referrals 30+ days older than the newest one count as external.
    Everything inside the window is internal again.
    """
    dated = [r for r in referrals if r.referral_date is not None]
    if not dated:
        return referrals
    newest = max(r.referral_date for r in dated)
    for referral in dated:
        referral.external = (newest - referral.referral_date) >= EXTERNAL_AFTER
    return referrals


def apply_external_rule(db: Session, kind: ReferralKind, record_id: int):
    referrals = db.query(kind.referral_model).filter(
        getattr(kind.referral_model, kind.record_fk) == record_id,
        kind.referral_model.status != ReferralStatus.REJECTED.value,
    ).all()
    mark_external(referrals)


def record_assignment(db: Session, kind: ReferralKind, record, agent: Optional[tables.User], name: Optional[str] = None):
    """History row for a direct (non-workflow) assignment."""
    referral = kind.referral_model(
        agent_id=agent.id if agent else None,
        name=agent.name if agent else (name or "Unknown"),
        type="employee" if agent else "custom",
        referral_date=datetime.utcnow(),
        status=ReferralStatus.CONFIRMED.value,
    )
    setattr(referral, kind.record_fk, record.id)
    db.add(referral)
    return referral


# ===========================
# STATE TRANSITIONS
# ===========================
def refer(db: Session, kind: ReferralKind, record_id: int, to_agent_id: Optional[int], by_user: tables.User):
    if not to_agent_id:
        raise HTTPException(status_code=400, detail="referred_to_agent_id is required")

    if to_agent_id == by_user.id:
        raise HTTPException(status_code=400, detail=f"Cannot refer {kind.label} to yourself")

    target = db.query(tables.User).filter(tables.User.id == to_agent_id).first()
    if not target:
        raise HTTPException(status_code=404, detail="Agent not found")

    if normalize_role(target.role) not in REFERRAL_TARGET_ROLES or not target.is_active:
        raise HTTPException(status_code=400, detail=f"Can only refer {kind.plural} to agents or team leaders")

    record = db.query(kind.record_model).filter(kind.record_model.id == record_id).first()
    if not record:
        raise HTTPException(status_code=404, detail=f"{kind.title} not found")

    if not is_management(by_user) and record.agent_id != by_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Access denied. You can only refer {kind.plural} that are assigned to you."
        )

    if not can_be_referred(kind, record):
        raise HTTPException(
            status_code=400,
            detail=f'{kind.plural.capitalize()} with status "{_status_label(record.status)}" cannot be referred.'
        )

    pending = db.query(kind.referral_model).filter(
        getattr(kind.referral_model, kind.record_fk) == record_id,
        kind.referral_model.status == ReferralStatus.PENDING.value,
    ).first()
    if pending:
        raise HTTPException(status_code=409, detail="A pending referral already exists")

    referral = kind.referral_model(
        agent_id=by_user.id,
        name=by_user.name,
        type="employee",
        referral_date=datetime.utcnow(),
        status=ReferralStatus.PENDING.value,
        referred_to_agent_id=target.id,
        referred_by_user_id=by_user.id,
    )
    setattr(referral, kind.record_fk, record.id)
    db.add(referral)
    db.flush()

    create_notification(
        db,
        user_id=target.id,
        title=f"New {kind.title} Referral",
        message=f"{by_user.name} referred a {kind.label} to you. Please confirm or reject it.",
        type=kind.notification_type,
        entity_type=kind.label,
        entity_id=record.id,
    )
    logger.info(f"{kind.title} {record.id} referred by user {by_user.id} to agent {target.id}")
    return referral


def _pending_referral_for_target(db: Session, kind: ReferralKind, referral_id: int, user: tables.User, action: str):
    referral = db.query(kind.referral_model).filter(kind.referral_model.id == referral_id).first()
    if not referral:
        raise HTTPException(status_code=404, detail="Referral not found")

    if referral.status != ReferralStatus.PENDING.value:
        raise HTTPException(status_code=400, detail=f"Referral is already {referral.status}")

    if referral.referred_to_agent_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only the referred agent can {action} this referral"
        )
    return referral


def confirm(db: Session, kind: ReferralKind, referral_id: int, user: tables.User):
    referral = _pending_referral_for_target(db, kind, referral_id, user, "confirm")

    record = getattr(referral, kind.label)
    referral.status = ReferralStatus.CONFIRMED.value
    referral.referral_date = datetime.utcnow()
    record.agent_id = user.id
    record.agent_name = user.name
    db.flush()
    apply_external_rule(db, kind, record.id)

    if referral.referred_by_user_id:
        create_notification(
            db,
            user_id=referral.referred_by_user_id,
            title=f"{kind.title} Referral Confirmed",
            message=f"{user.name} confirmed your {kind.label} referral.",
            type=kind.notification_type,
            entity_type=kind.label,
            entity_id=record.id,
        )
    logger.info(f"{kind.title} referral {referral.id} confirmed by user {user.id}")
    return referral


def reject(db: Session, kind: ReferralKind, referral_id: int, user: tables.User):
    referral = _pending_referral_for_target(db, kind, referral_id, user, "reject")

    referral.status = ReferralStatus.REJECTED.value
    db.flush()

    if referral.referred_by_user_id:
        create_notification(
            db,
            user_id=referral.referred_by_user_id,
            title=f"{kind.title} Referral Rejected",
            message=f"{user.name} rejected your {kind.label} referral.",
            type=kind.notification_type,
            entity_type=kind.label,
            entity_id=getattr(referral, kind.record_fk),
        )
    logger.info(f"{kind.title} referral {referral.id} rejected by user {user.id}")
    return referral


# ===========================
# QUERIES
# ===========================
def _receives_referrals(user: tables.User) -> bool:
    return normalize_role(user.role) in (Role.AGENT, Role.TEAM_LEADER)


def pending_for(db: Session, kind: ReferralKind, user: tables.User) -> List:
    if not _receives_referrals(user):
        return []
    return db.query(kind.referral_model).filter(
        kind.referral_model.referred_to_agent_id == user.id,
        kind.referral_model.status == ReferralStatus.PENDING.value,
    ).order_by(kind.referral_model.referral_date.desc()).all()


def pending_count(db: Session, kind: ReferralKind, user: tables.User) -> int:
    if not _receives_referrals(user):
        return 0
    return db.query(kind.referral_model).filter(
        kind.referral_model.referred_to_agent_id == user.id,
        kind.referral_model.status == ReferralStatus.PENDING.value,
    ).count()


def history(db: Session, kind: ReferralKind, record_id: int) -> List:
    return db.query(kind.referral_model).filter(
        getattr(kind.referral_model, kind.record_fk) == record_id
    ).order_by(kind.referral_model.referral_date.desc()).all()
