"""Resolve human-readable names from import files to database ids."""

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from rapidfuzz.distance import Levenshtein

from app.core.permissions import Role, normalize_role

MATCH_THRESHOLD = 0.88

OPERATIONS_ROLE_PRIORITY = {
    Role.OPERATIONS_MANAGER: 1,
    Role.OPERATIONS: 2,
    Role.ADMIN: 3,
    Role.AGENT_MANAGER: 4,
    Role.TEAM_LEADER: 5,
    Role.AGENT: 6,
}

CATEGORY_SYNONYMS = {
    "apartment": "Apartment",
    "appartment": "Apartment",
    "apt": "Apartment",
    "shop": "Shop",
    "project": "Project",
    "office": "Office",
    "commercial building": "Office",
    "duplex": "Duplex",
    "studio": "Studio",
    "land": "Land",
    "pharmacy": "Pharmacy",
    "showroom": "Showroom",
    "industrial warehouse": "Industrial Warehouse",
    "industrial factory": "Factory",
    "warehouse": "Warehouse",
    "villa": "Villa",
    "chalet": "Chalet",
    "factory": "Factory",
    "restaurant": "Restaurant",
    "rooftop": "Rooftop",
    "industrial building": "Industrial Building",
    "bank": "Bank",
    "hangar": "Hangar",
    "pub": "Pub",
    "cloud kitchen": "Cloud Kitchen",
    "polyclinic": "Polyclinic",
}

SOURCE_SYNONYMS = {
    "fb": "Facebook",
    "facebook": "Facebook",
    "insta": "Instagram",
    "ig": "Instagram",
    "instagram": "Instagram",
    "website": "Website",
    "web": "Website",
    "site": "Website",
    "whatsapp": "WhatsApp",
    "wa": "WhatsApp",
    "referral": "Referral",
    "ref": "Referral",
    "walk in": "Walk-in",
    "walkin": "Walk-in",
    "walk-in": "Walk-in",
    "sign": "Sign Board",
    "sign board": "Sign Board",
    "billboard": "Sign Board",
    "phone": "Phone Call",
    "call": "Phone Call",
    "phone call": "Phone Call",
    "olx": "OLX",
    "property finder": "Property Finder",
    "tiktok": "TikTok",
}

PROPERTY_STATUS_SYNONYMS = {
    "active": ("active", "actif"),
    "inactive": ("inactive", "inactif", "archived"),
}


@dataclass
class Match:
    id: Optional[int] = None
    name: Optional[str] = None
    warning: Optional[str] = None
    error: Optional[str] = None
    create: bool = False


def normalize_name(value) -> str:
    return re.sub(r"\s+", " ", str(value or "")).strip().lower()


def similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def initials(name: str) -> str:
    """'Melissa Atallah' -> 'MA'."""
    return "".join(part[0] for part in str(name or "").split() if part).upper()


# ===========================
# USERS
# ===========================
def match_agent(users: Sequence, value) -> Match:
    """Best fuzzy match over assignable users. Unmatched names are kept as text."""
    raw = re.sub(r"\s+", " ", str(value or "")).strip()
    if not raw:
        return Match()
    wanted = normalize_name(raw)

    best, best_score = None, 0.0
    for user in users:
        score = similarity(wanted, normalize_name(user.name))
        if score >= MATCH_THRESHOLD and score > best_score:
            best, best_score = user, score
    if best is not None:
        return Match(id=best.id, name=best.name)

    fallback = f"{raw} (not in system)"
    return Match(name=fallback, warning=f'Agent "{raw}" not matched; stored as "{fallback}"')


def match_operations(users: Sequence, value) -> Match:
    """Initials ("MA") or full name; ties go to the most operations-like role."""
    raw = re.sub(r"\s+", " ", str(value or "")).strip()
    if not raw:
        return Match(warning="Operations value missing")

    if " " in raw:
        wanted = normalize_name(raw)
        candidates = [
            user for user in users
            if wanted in normalize_name(user.name) or normalize_name(user.name) in wanted
        ]
        if not candidates:
            candidates = [u for u in users if similarity(wanted, normalize_name(u.name)) >= MATCH_THRESHOLD]
    else:
        wanted_initials = raw.upper()
        candidates = [user for user in users if initials(user.name) == wanted_initials]

    if not candidates:
        return Match(warning=f"Ops: {raw} (not in system)")

    def rank(user):
        return (OPERATIONS_ROLE_PRIORITY.get(normalize_role(user.role), 99), user.id)

    chosen = sorted(candidates, key=rank)[0]
    warning = None
    if len(candidates) > 1:
        warning = f'Multiple matches for Ops "{raw}"; used {chosen.name}'
    return Match(id=chosen.id, name=chosen.name, warning=warning)


# ===========================
# SETUP TABLES
# ===========================
def _find_by_name(rows: Iterable, name: str, attr: str = "name"):
    wanted = normalize_name(name)
    for row in rows:
        if normalize_name(getattr(row, attr)) == wanted:
            return row
    return None


def match_category(categories: Sequence, value) -> Match:
    if not str(value or "").strip():
        other = _find_by_name(categories, "other")
        if other:
            return Match(id=other.id, name=other.name, warning="Category missing; used Other")
        return Match(error="Category is required")

    raw = normalize_name(value)
    canonical = CATEGORY_SYNONYMS.get(raw)
    if canonical:
        row = _find_by_name(categories, canonical)
        if row:
            return Match(id=row.id, name=row.name)

    exact = _find_by_name(categories, raw) or next(
        (c for c in categories if normalize_name(c.code) == raw), None
    )
    if exact:
        return Match(id=exact.id, name=exact.name)

    best, best_score = None, 0.0
    for category in categories:
        score = similarity(raw, normalize_name(category.name))
        if score >= MATCH_THRESHOLD and score > best_score:
            best, best_score = category, score
    if best:
        return Match(id=best.id, name=best.name, warning=f'Fuzzy matched "{value}" to {best.name}')

    other = _find_by_name(categories, "other")
    if other:
        return Match(id=other.id, name=other.name, warning=f'No match for category "{value}"; used Other')
    return Match(error=f'Unknown category "{value}"')


def match_property_status(statuses: Sequence, value) -> Match:
    def by_code_or_name(key):
        return next(
            (s for s in statuses if normalize_name(s.code) == key or normalize_name(s.name) == key),
            None,
        )

    if not str(value or "").strip():
        active = by_code_or_name("active")
        if active:
            return Match(id=active.id, name=active.name)
        return Match(error="Active status missing and no default")

    raw = normalize_name(value)
    direct = by_code_or_name(raw)
    if direct:
        return Match(id=direct.id, name=direct.name)

    if any(word in raw for word in PROPERTY_STATUS_SYNONYMS["inactive"]):
        archived = by_code_or_name("archived")
        if archived and "archived" in raw:
            return Match(id=archived.id, name=archived.name)
        inactive = by_code_or_name("inactive") or archived
        if inactive:
            return Match(id=inactive.id, name=inactive.name)
        return Match(error="Inactive/Archived status not found in system")

    if any(word in raw for word in PROPERTY_STATUS_SYNONYMS["active"]):
        active = by_code_or_name("active")
        if active:
            return Match(id=active.id, name=active.name)
        return Match(error="Active status not found in system")

    return Match(error=f'Unknown status "{value}"')


def match_lead_status(statuses: Sequence, value, default_name: str) -> Match:
    def by_name_or_code(key):
        return next(
            (s for s in statuses if normalize_name(s.status_name) == key or normalize_name(s.code) == key),
            None,
        )

    if not str(value or "").strip():
        default = by_name_or_code(normalize_name(default_name))
        if default:
            return Match(id=default.id, name=default.status_name)
        active = [s for s in statuses if s.is_active]
        if active:
            return Match(
                id=active[0].id, name=active[0].status_name,
                warning=f'Default status "{default_name}" missing; used {active[0].status_name}',
            )
        return Match(error="No lead statuses configured")

    found = by_name_or_code(normalize_name(value))
    if found:
        return Match(id=found.id, name=found.status_name)
    return Match(error=f'Unknown status "{value}"')


def canonical_source(value) -> Optional[str]:
    raw = normalize_name(value)
    if not raw:
        return None
    return SOURCE_SYNONYMS.get(raw) or " ".join(word.capitalize() for word in raw.split())


def match_source(sources: Sequence, value, can_create: bool) -> Match:
    """Reference source by name. Missing ones are created on commit when allowed."""
    canonical = canonical_source(value)
    if not canonical:
        return Match(warning="Source missing")

    row = _find_by_name(sources, canonical, attr="source_name")
    if row:
        return Match(id=row.id, name=row.source_name)
    if can_create:
        return Match(name=canonical, create=True, warning=f'Source "{canonical}" will be created')

    fallback = _find_by_name(sources, "other", "source_name") or _find_by_name(sources, "external", "source_name")
    if fallback:
        return Match(id=fallback.id, name=fallback.source_name, warning=f'Unknown source "{value}"; used {fallback.source_name}')
    return Match(warning=f'Unknown source "{value}"; stored without source')
