"""Role enumeration and capability table shared by every router."""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session
import logging

from app.core.security import get_current_user
from app.models import tables

logger = logging.getLogger(__name__)


class Role(str, Enum):
    ADMIN = "admin"
    OPERATIONS_MANAGER = "operations_manager"
    OPERATIONS = "operations"
    AGENT_MANAGER = "agent_manager"
    TEAM_LEADER = "team_leader"
    AGENT = "agent"
    ACCOUNTANT = "accountant"


class Capability(str, Enum):
    # Setup tables
    MANAGE_LEAD_STATUSES = "manage_lead_statuses"
    MANAGE_PROPERTY_SETUP = "manage_property_setup"
    MANAGE_REFERENCE_SOURCES = "manage_reference_sources"

    # Leads
    VIEW_LEADS = "view_leads"
    MANAGE_LEADS = "manage_leads"
    DELETE_LEADS = "delete_leads"
    IMPORT_LEADS = "import_leads"

    # Properties
    VIEW_PROPERTIES = "view_properties"
    MANAGE_PROPERTIES = "manage_properties"
    DELETE_PROPERTIES = "delete_properties"
    IMPORT_PROPERTIES = "import_properties"

    # Referrals
    REFER = "refer"
    RECEIVE_REFERRALS = "receive_referrals"

    # Viewings
    VIEW_VIEWINGS = "view_viewings"
    CREATE_VIEWINGS = "create_viewings"
    DELETE_VIEWINGS = "delete_viewings"
    EDIT_ANY_VIEWING_UPDATE = "edit_any_viewing_update"

    # Users
    VIEW_USERS = "view_users"
    MANAGE_USERS = "manage_users"
    MANAGE_TEAMS = "manage_teams"

    # Reports & settings
    VIEW_REPORTS = "view_reports"
    VIEW_FINANCIAL_DATA = "view_financial_data"
    MANAGE_SETTINGS = "manage_settings"

    # Records outside the caller's own assignment
    VIEW_ALL_RECORDS = "view_all_records"


_FIELD_ROLE_CAPABILITIES = [
    Capability.VIEW_LEADS,
    Capability.VIEW_PROPERTIES,
    Capability.REFER,
    Capability.RECEIVE_REFERRALS,
    Capability.VIEW_VIEWINGS,
    Capability.CREATE_VIEWINGS,
]

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    # Full access
    Role.ADMIN: frozenset(Capability),
    Role.OPERATIONS_MANAGER: frozenset(Capability),
    # Everything except financial data and user administration
    Role.OPERATIONS: frozenset([
        Capability.MANAGE_REFERENCE_SOURCES,
        Capability.VIEW_LEADS,
        Capability.MANAGE_LEADS,
        Capability.IMPORT_LEADS,
        Capability.VIEW_PROPERTIES,
        Capability.MANAGE_PROPERTIES,
        Capability.IMPORT_PROPERTIES,
        Capability.REFER,
        Capability.VIEW_VIEWINGS,
        Capability.CREATE_VIEWINGS,
        Capability.DELETE_VIEWINGS,
        Capability.EDIT_ANY_VIEWING_UPDATE,
        Capability.VIEW_USERS,
        Capability.VIEW_ALL_RECORDS,
    ]),
    Role.AGENT_MANAGER: frozenset([
        Capability.MANAGE_REFERENCE_SOURCES,
        Capability.VIEW_LEADS,
        Capability.MANAGE_LEADS,
        Capability.IMPORT_LEADS,
        Capability.VIEW_PROPERTIES,
        Capability.MANAGE_PROPERTIES,
        Capability.IMPORT_PROPERTIES,
        Capability.REFER,
        Capability.VIEW_VIEWINGS,
        Capability.CREATE_VIEWINGS,
        Capability.EDIT_ANY_VIEWING_UPDATE,
        Capability.VIEW_USERS,
        Capability.MANAGE_TEAMS,
        Capability.VIEW_ALL_RECORDS,
    ]),
    Role.TEAM_LEADER: frozenset(_FIELD_ROLE_CAPABILITIES),
    Role.AGENT: frozenset(_FIELD_ROLE_CAPABILITIES),
    Role.ACCOUNTANT: frozenset([
        Capability.VIEW_PROPERTIES,
        Capability.VIEW_REPORTS,
        Capability.VIEW_FINANCIAL_DATA,
        Capability.VIEW_ALL_RECORDS,
    ]),
}

MANAGEMENT_ROLES = frozenset([
    Role.ADMIN,
    Role.OPERATIONS_MANAGER,
    Role.OPERATIONS,
    Role.AGENT_MANAGER,
])

REFERRAL_TARGET_ROLES = frozenset([Role.AGENT, Role.TEAM_LEADER])


def normalize_role(value) -> Optional[Role]:
    """Map stored role strings ("Operations Manager", "team leader") onto Role."""
    if value is None:
        return None
    if isinstance(value, Role):
        return value
    key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return Role(key)
    except ValueError:
        return None


def capabilities_for(role) -> FrozenSet[Capability]:
    return ROLE_CAPABILITIES.get(normalize_role(role), frozenset())


def has_capability(user: tables.User, capability: Capability) -> bool:
    return capability in capabilities_for(user.role)


def is_management(user: tables.User) -> bool:
    return normalize_role(user.role) in MANAGEMENT_ROLES


def check_capability(user: tables.User, capability: Capability):
    """Raise 403 if user lacks the capability."""
    if not has_capability(user, capability):
        logger.warning(
            f"Permission denied: {user.email} (role: {user.role}) attempted {capability.value}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )


def require_capability(capability: Capability):
    """Dependency factory to require a specific capability."""
    def capability_checker(current_user: tables.User = Depends(get_current_user)):
        check_capability(current_user, capability)
        return current_user
    return capability_checker


# ===========================
# DATA SCOPING
# ===========================
def team_agent_ids(db: Session, leader_id: int) -> List[int]:
    rows = db.query(tables.TeamAssignment.agent_id).filter(
        tables.TeamAssignment.team_leader_id == leader_id,
        tables.TeamAssignment.is_active.is_(True),
    ).all()
    return [row[0] for row in rows]


def visible_agent_ids(db: Session, user: tables.User) -> Optional[List[int]]:
    """
    Agent ids whose records the user may see.
    None means unrestricted.
    """
    if has_capability(user, Capability.VIEW_ALL_RECORDS):
        return None
    role = normalize_role(user.role)
    if role == Role.TEAM_LEADER:
        return [user.id] + team_agent_ids(db, user.id)
    return [user.id]


def can_access_record(db: Session, user: tables.User, agent_id: Optional[int]) -> bool:
    allowed = visible_agent_ids(db, user)
    return allowed is None or agent_id in allowed
