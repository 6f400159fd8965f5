# app/services/viewings.py
from enum import Enum
from typing import List

from app.core.permissions import Capability, has_capability
from app.models import tables
from app.schemas import ViewingOut, ViewingUpdateOut


class ViewingStatus(str, Enum):
    INITIAL_CONTACT = "Initial Contact"
    SCHEDULED = "Scheduled"
    FOLLOW_UP = "Follow Up"
    NEGOTIATION = "Negotiation"
    OFFER_MADE = "Offer Made"
    COMPLETED = "Completed"
    NOT_INTERESTED = "Not Interested"
    CANCELLED = "Cancelled"
    NO_SHOW = "No Show"


DEFAULT_VIEWING_STATUS = ViewingStatus.SCHEDULED.value


def parse_status(value: str) -> ViewingStatus:
    """Case-insensitive lookup; raises ValueError for anything outside the enumeration."""
    for member in ViewingStatus:
        if member.value.lower() == (value or "").strip().lower():
            return member
    allowed = ", ".join(member.value for member in ViewingStatus)
    raise ValueError(f"Invalid status. Allowed: {allowed}")


def current_status(viewing: tables.Viewing) -> str:
    """Status of the most recently added update, or the default."""
    if not viewing.updates:
        return DEFAULT_VIEWING_STATUS
    latest = max(viewing.updates, key=lambda update: update.id)
    return latest.status


def timeline(viewing: tables.Viewing) -> List[tables.ViewingUpdate]:
    """Newest first. Stored order is never changed."""
    return sorted(viewing.updates, key=lambda update: update.id, reverse=True)


def can_edit_update(user: tables.User, update: tables.ViewingUpdate) -> bool:
    return update.created_by == user.id or has_capability(user, Capability.EDIT_ANY_VIEWING_UPDATE)


def serialize_viewing(viewing: tables.Viewing) -> ViewingOut:
    return ViewingOut(
        id=viewing.id,
        property_id=viewing.property_id,
        lead_id=viewing.lead_id,
        agent_id=viewing.agent_id,
        viewing_date=viewing.viewing_date,
        viewing_time=viewing.viewing_time,
        is_serious=viewing.is_serious,
        description=viewing.description,
        notes=viewing.notes,
        current_status=current_status(viewing),
        updates=[ViewingUpdateOut.model_validate(update) for update in timeline(viewing)],
        created_at=viewing.created_at,
    )
