# app/services/imports/properties.py
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Hashable, List, Optional, Set

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.permissions import REFERRAL_TARGET_ROLES, normalize_role
from app.models import tables
from app.services import referrals
from app.services.imports import matchers, normalizers
from app.services.imports.leads import DEFAULT_LEAD_STATUS
from app.services.imports.parser import ParsedRow
from app.services.imports.pipeline import RowResult, SpreadsheetImporter

MISSING_LOCATION = "—"
PRICE_MISSING_WARNING = "Price missing; stored as 0"

PROPERTY_ALIASES = {
    "date": "date",
    "listingdate": "date",
    "reference": "reference_number",
    "referencenumber": "reference_number",
    "ref": "reference_number",
    "refno": "reference_number",
    "active": "status",
    "status": "status",
    "activestatus": "status",
    "location": "location",
    "category": "category",
    "bldgname": "building_name",
    "buildingname": "building_name",
    "building": "building_name",
    "ownername": "owner_name",
    "owner": "owner_name",
    "phonenumber": "phone_number",
    "phone": "phone_number",
    "surface": "surface",
    "area": "surface",
    "details": "details",
    "interiordetails": "interior_details",
    "builtyear": "built_year",
    "yearbuilt": "built_year",
    "concierge": "concierge",
    "view": "view_type",
    "agentname": "agent_name",
    "agent": "agent_name",
    "price": "price",
    "notes": "notes",
    "operations": "operations",
    "ops": "operations",
}


@dataclass
class PropertyImportContext:
    agents: List[Any] = field(default_factory=list)
    users: List[Any] = field(default_factory=list)
    statuses: List[Any] = field(default_factory=list)
    categories: List[Any] = field(default_factory=list)
    default_lead_status_id: Optional[int] = None


def load_property_context(db: Session, user: tables.User) -> PropertyImportContext:
    users = db.query(tables.User).filter(tables.User.is_active.is_(True)).all()
    lead_status = matchers.match_lead_status(db.query(tables.LeadStatus).all(), None, DEFAULT_LEAD_STATUS)
    return PropertyImportContext(
        agents=[u for u in users if normalize_role(u.role) in REFERRAL_TARGET_ROLES],
        users=users,
        statuses=db.query(tables.PropertyStatus).all(),
        categories=db.query(tables.Category).filter(tables.Category.is_active.is_(True)).all(),
        default_lead_status_id=lead_status.id,
    )


def property_key(reference: Optional[str], owner_name: Optional[str], phone: Optional[str], location: Optional[str]) -> Optional[Hashable]:
    """Reference number when present, else owner + phone + location."""
    if reference:
        return ("ref", reference.strip().upper())
    if owner_name or phone:
        return ("owner", matchers.normalize_name(owner_name), phone or "", matchers.normalize_name(location))
    return None


def generate_reference(property_type: str, category_code: str, listed: date, property_id: int) -> str:
    """FSAP24007: F, S(ale)/R(ent), category code, two-digit year, padded id."""
    kind = "R" if property_type == "rent" else "S"
    return f"F{kind}{(category_code or 'X').upper()}{listed.year % 100:02d}{property_id:03d}"


class PropertyImporter(SpreadsheetImporter):
    entity = "property"
    aliases = PROPERTY_ALIASES

    def process_row(self, row: ParsedRow, previous_date: Optional[date]) -> RowResult:
        ctx: PropertyImportContext = self.context
        values = row.values
        result = RowResult(row_number=row.row_number, original=row.original)

        # 1. Normalize
        reference = normalizers.clean_text(values.get("reference_number"))
        listed = normalizers.normalize_date(values.get("date"), previous_date, self.today)
        listed = normalizers.correct_year_from_reference(listed, reference, self.today)
        listing_date = result.take(listed)

        location = normalizers.clean_text(values.get("location"))
        if not location:
            result.warnings.append(f"Location missing; stored as {MISSING_LOCATION}")
            location = MISSING_LOCATION

        owner_name = normalizers.clean_text(values.get("owner_name"))
        if not owner_name:
            result.warnings.append("Owner name missing")
        phone = result.take(normalizers.normalize_phone(values.get("phone_number")))
        surface = result.take(normalizers.normalize_surface(values.get("surface")))
        price_result = normalizers.normalize_price(values.get("price"))
        if price_result.value is None and price_result.error is None:
            price_result = normalizers.Normalized(Decimal("0"), warning=PRICE_MISSING_WARNING)
        price = result.take(price_result)
        built_year = result.take(normalizers.normalize_built_year(values.get("built_year"), self.today))
        concierge = result.take(normalizers.normalize_yes_no(values.get("concierge")))
        view_type = result.take(normalizers.normalize_view(values.get("view_type")))

        result.normalized = {
            "date": listing_date,
            "reference_number": reference,
            "location": location,
            "building_name": normalizers.clean_text(values.get("building_name")),
            "owner_name": owner_name,
            "phone_number": phone,
            "surface": surface,
            "details": normalizers.clean_text(values.get("details")),
            "interior_details": normalizers.clean_text(values.get("interior_details")),
            "built_year": built_year,
            "concierge": bool(concierge),
            "view_type": view_type,
            "price": price,
            "notes": normalizers.clean_text(values.get("notes")),
        }

        # 2. Resolve references
        status = matchers.match_property_status(ctx.statuses, values.get("status"))
        result.take(status)
        category = matchers.match_category(ctx.categories, values.get("category"))
        result.take(category)
        agent = matchers.match_agent(ctx.agents, values.get("agent_name"))
        result.take(agent)
        operations = matchers.match_operations(ctx.users, values.get("operations"))
        result.take(operations)

        category_code = next((c.code for c in ctx.categories if c.id == category.id), None)
        status_code = next((s.code for s in ctx.statuses if s.id == status.id), "") or ""
        result.resolved = {
            "status_id": status.id,
            "status_name": status.name,
            "property_type": "rent" if status_code.lower() == "rented" else "sale",
            "category_id": category.id,
            "category_name": category.name,
            "category_code": category_code,
            "agent_id": agent.id,
            "agent_name": agent.name,
            "operations_id": operations.id,
            "operations_name": operations.name,
        }

        result.key = property_key(reference, owner_name, phone, location)
        return result

    def existing_keys(self, db: Session, results: List[RowResult]) -> Set[Hashable]:
        references, phones, owners = set(), set(), set()
        for r in results:
            if r.normalized.get("reference_number"):
                references.add(r.normalized["reference_number"].upper())
            elif r.normalized.get("phone_number"):
                phones.add(r.normalized["phone_number"])
            elif r.normalized.get("owner_name"):
                owners.add(matchers.normalize_name(r.normalized["owner_name"]))
        if not references and not phones and not owners:
            return set()
        conditions = []
        if references:
            conditions.append(func.upper(tables.Property.reference_number).in_(sorted(references)))
        if phones:
            conditions.append(tables.Property.phone_number.in_(sorted(phones)))
        if owners:
            conditions.append(func.lower(tables.Property.owner_name).in_(sorted(owners)))
        rows = db.query(
            tables.Property.reference_number,
            tables.Property.owner_name,
            tables.Property.phone_number,
            tables.Property.location,
        ).filter(or_(*conditions)).all()

        keys = set()
        for reference, owner_name, phone, location in rows:
            if reference:
                keys.add(property_key(reference, None, None, None))
            composite = property_key(None, owner_name, phone, location)
            if composite:
                keys.add(composite)
        return keys

    def insert(self, db: Session, result: RowResult, user: tables.User) -> Dict[str, Any]:
        ctx: PropertyImportContext = self.context
        resolved = result.resolved
        normalized = result.normalized

        owner = find_or_create_owner(
            db, normalized["owner_name"], normalized["phone_number"], normalized["date"],
            ctx.default_lead_status_id, user, resolved["agent_id"],
        )

        prop = tables.Property(
            reference_number=normalized["reference_number"],
            status_id=resolved["status_id"],
            property_type=resolved["property_type"],
            location=normalized["location"],
            category_id=resolved["category_id"],
            building_name=normalized["building_name"],
            owner_id=owner.id if owner else None,
            owner_name=normalized["owner_name"],
            phone_number=normalized["phone_number"],
            surface=normalized["surface"],
            details=normalized["details"],
            interior_details=normalized["interior_details"],
            built_year=normalized["built_year"],
            view_type=normalized["view_type"],
            concierge=normalized["concierge"],
            agent_id=resolved["agent_id"],
            agent_name=resolved["agent_name"],
            operations_id=resolved["operations_id"],
            price=normalized["price"],
            notes=normalized["notes"],
            listing_date=normalized["date"],
            image_gallery=[],
        )
        db.add(prop)
        db.flush()

        if not prop.reference_number:
            prop.reference_number = generate_reference(
                prop.property_type, resolved["category_code"], normalized["date"], prop.id
            )
            db.flush()

        if resolved["agent_id"] or resolved["agent_name"]:
            agent = db.get(tables.User, resolved["agent_id"]) if resolved["agent_id"] else None
            referrals.record_assignment(db, referrals.PROPERTY, prop, agent, resolved["agent_name"])

        return {"row": result.row_number, "id": prop.id, "referenceNumber": prop.reference_number}

    def find_existing(self, db: Session, result: RowResult) -> Optional[tables.Property]:
        """Upsert matches by reference number only."""
        reference = result.normalized.get("reference_number")
        if not reference:
            return None
        return db.query(tables.Property).filter(
            func.upper(tables.Property.reference_number) == reference.upper()
        ).first()

    def update(self, db: Session, existing: tables.Property, result: RowResult, user: tables.User) -> Dict[str, Any]:
        ctx: PropertyImportContext = self.context
        resolved = result.resolved
        normalized = result.normalized

        existing.status_id = resolved["status_id"]
        status_row = next((s for s in ctx.statuses if s.id == resolved["status_id"]), None)
        if referrals.is_terminal_status(status_row):
            existing.closed_date = existing.closed_date or self.today
        else:
            existing.closed_date = None

        if normalized["location"] != MISSING_LOCATION:
            existing.location = normalized["location"]
        if PRICE_MISSING_WARNING not in result.warnings:
            existing.price = normalized["price"]
        if normalized["date"]:
            existing.listing_date = normalized["date"]
        for column in ("surface", "built_year", "notes", "details", "interior_details"):
            if normalized[column] is not None:
                setattr(existing, column, normalized[column])
        if resolved["operations_id"]:
            existing.operations_id = resolved["operations_id"]

        if resolved["agent_id"] and resolved["agent_id"] != existing.agent_id:
            agent = db.get(tables.User, resolved["agent_id"])
            existing.agent_id = agent.id
            existing.agent_name = agent.name
            referrals.record_assignment(db, referrals.PROPERTY, existing, agent)
        db.flush()

        return {"row": result.row_number, "id": existing.id, "referenceNumber": existing.reference_number}


def find_or_create_owner(db: Session, owner_name, phone, lead_date, status_id, user, agent_id):
    """Existing lead with the same phone, else a new lead for the owner."""
    if phone:
        lead = db.query(tables.Lead).filter(tables.Lead.phone_number == phone).first()
        if lead:
            return lead
    if not owner_name or status_id is None:
        return None
    lead = tables.Lead(
        date=lead_date,
        customer_name=owner_name,
        phone_number=phone,
        agent_id=agent_id,
        added_by_id=user.id,
        status_id=status_id,
    )
    db.add(lead)
    db.flush()
    return lead
