# app/services/imports/leads.py
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Hashable, List, Optional, Set

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.core.permissions import Capability, REFERRAL_TARGET_ROLES, has_capability, normalize_role
from app.models import tables
from app.services import referrals
from app.services.imports import matchers, normalizers
from app.services.imports.parser import ParsedRow
from app.services.imports.pipeline import RowResult, SpreadsheetImporter

DEFAULT_LEAD_STATUS = "Active"

LEAD_ALIASES = {
    "date": "date",
    "leaddate": "date",
    "customername": "customer_name",
    "customer": "customer_name",
    "clientname": "customer_name",
    "name": "customer_name",
    "phonenumber": "phone_number",
    "phone": "phone_number",
    "mobile": "phone_number",
    "agentname": "agent_name",
    "agent": "agent_name",
    "price": "price",
    "budget": "price",
    "source": "source",
    "referencesource": "source",
    "operations": "operations",
    "ops": "operations",
    "status": "status",
    # "Code" and "Reference" columns are legacy and ignored on purpose
}


@dataclass
class LeadImportContext:
    agents: List[Any] = field(default_factory=list)
    users: List[Any] = field(default_factory=list)
    statuses: List[Any] = field(default_factory=list)
    sources: List[Any] = field(default_factory=list)
    can_create_sources: bool = False


def load_lead_context(db: Session, user: tables.User) -> LeadImportContext:
    users = db.query(tables.User).filter(tables.User.is_active.is_(True)).all()
    return LeadImportContext(
        agents=[u for u in users if normalize_role(u.role) in REFERRAL_TARGET_ROLES],
        users=users,
        statuses=db.query(tables.LeadStatus).all(),
        sources=db.query(tables.ReferenceSource).all(),
        can_create_sources=has_capability(user, Capability.MANAGE_REFERENCE_SOURCES),
    )


def lead_key(customer_name: Optional[str], phone: Optional[str], lead_date: Optional[date]) -> Hashable:
    return (matchers.normalize_name(customer_name), phone or "", lead_date)


class LeadImporter(SpreadsheetImporter):
    entity = "lead"
    aliases = LEAD_ALIASES

    def process_row(self, row: ParsedRow, previous_date: Optional[date]) -> RowResult:
        ctx: LeadImportContext = self.context
        values = row.values
        result = RowResult(row_number=row.row_number, original=row.original)

        # 1. Normalize
        lead_date = result.take(normalizers.normalize_date(values.get("date"), previous_date, self.today))
        customer_name = normalizers.clean_text(values.get("customer_name"))
        if not customer_name:
            result.errors.append("Customer name is required")
        phone = result.take(normalizers.normalize_phone(values.get("phone_number")))
        price = result.take(normalizers.normalize_price(values.get("price")))

        result.normalized = {
            "date": lead_date,
            "customer_name": customer_name,
            "phone_number": phone,
            "price": price,
        }

        # 2. Resolve references
        status = matchers.match_lead_status(ctx.statuses, values.get("status"), DEFAULT_LEAD_STATUS)
        result.take(status)
        agent = matchers.match_agent(ctx.agents, values.get("agent_name"))
        result.take(agent)
        operations = matchers.match_operations(ctx.users, values.get("operations"))
        result.take(operations)
        source = matchers.match_source(ctx.sources, values.get("source"), ctx.can_create_sources)
        result.take(source)

        result.resolved = {
            "status_id": status.id,
            "status_name": status.name,
            "agent_id": agent.id,
            "agent_name": agent.name,
            "operations_id": operations.id,
            "operations_name": operations.name,
            "reference_source_id": source.id,
            "reference_source_name": source.name,
            "create_source": source.create,
        }

        if customer_name:
            result.key = lead_key(customer_name, phone, lead_date)
        return result

    def existing_keys(self, db: Session, results: List[RowResult]) -> Set[Hashable]:
        phones = {r.normalized.get("phone_number") for r in results if r.normalized.get("phone_number")}
        names = {
            matchers.normalize_name(r.normalized.get("customer_name"))
            for r in results if r.normalized.get("customer_name")
        }
        if not phones and not names:
            return set()
        conditions = []
        if phones:
            conditions.append(tables.Lead.phone_number.in_(sorted(phones)))
        if names:
            conditions.append(func.lower(tables.Lead.customer_name).in_(sorted(names)))
        rows = db.query(
            tables.Lead.customer_name, tables.Lead.phone_number, tables.Lead.date
        ).filter(or_(*conditions)).all()
        return {lead_key(name, phone, lead_date) for name, phone, lead_date in rows}

    def insert(self, db: Session, result: RowResult, user: tables.User) -> Dict[str, Any]:
        resolved = result.resolved
        normalized = result.normalized

        source_id = resolved["reference_source_id"]
        if resolved["create_source"]:
            source_id = find_or_create_source(db, resolved["reference_source_name"]).id

        lead = tables.Lead(
            date=normalized["date"],
            customer_name=normalized["customer_name"],
            phone_number=normalized["phone_number"],
            agent_id=resolved["agent_id"],
            agent_name=resolved["agent_name"],
            price=normalized["price"],
            reference_source_id=source_id,
            operations_id=resolved["operations_id"],
            added_by_id=user.id,
            status_id=resolved["status_id"],
        )
        db.add(lead)
        db.flush()

        if resolved["agent_id"] or resolved["agent_name"]:
            agent = db.get(tables.User, resolved["agent_id"]) if resolved["agent_id"] else None
            referrals.record_assignment(db, referrals.LEAD, lead, agent, resolved["agent_name"])

        return {"row": result.row_number, "id": lead.id, "customerName": lead.customer_name}

    def find_existing(self, db: Session, result: RowResult) -> Optional[tables.Lead]:
        candidates = db.query(tables.Lead).filter(
            tables.Lead.date == result.normalized["date"]
        ).order_by(tables.Lead.id).all()
        return next(
            (lead for lead in candidates if lead_key(lead.customer_name, lead.phone_number, lead.date) == result.key),
            None,
        )

    def update(self, db: Session, existing: tables.Lead, result: RowResult, user: tables.User) -> Dict[str, Any]:
        """Blank cells keep the stored value."""
        resolved = result.resolved
        normalized = result.normalized

        if normalized["price"] is not None:
            existing.price = normalized["price"]
        if resolved["create_source"]:
            existing.reference_source_id = find_or_create_source(db, resolved["reference_source_name"]).id
        elif resolved["reference_source_id"]:
            existing.reference_source_id = resolved["reference_source_id"]
        if resolved["operations_id"]:
            existing.operations_id = resolved["operations_id"]

        if resolved["agent_id"] and resolved["agent_id"] != existing.agent_id:
            agent = db.get(tables.User, resolved["agent_id"])
            existing.agent_id = agent.id
            existing.agent_name = agent.name
            referrals.record_assignment(db, referrals.LEAD, existing, agent)
        db.flush()

        return {"row": result.row_number, "id": existing.id, "customerName": existing.customer_name}


def find_or_create_source(db: Session, name: str) -> tables.ReferenceSource:
    source = db.query(tables.ReferenceSource).filter(
        func.lower(tables.ReferenceSource.source_name) == name.lower()
    ).first()
    if source is None:
        source = tables.ReferenceSource(source_name=name)
        db.add(source)
        db.flush()
    return source
