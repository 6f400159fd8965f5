# app/services/reports.py
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, aliased
import logging

from app.models import tables
from app.services.referrals import TERMINAL_PROPERTY_STATUSES
from app.utils.exporters import TabularReport

logger = logging.getLogger(__name__)

FINDERS_COMMISSION_KEY = "commission_finders"
ADMINISTRATION_COMMISSION_KEY = "commission_administration_percentage"
DEFAULT_FINDERS_PERCENT = Decimal("1")
DEFAULT_ADMINISTRATION_PERCENT = Decimal("0")

CENT = Decimal("0.01")


def validate_range(start_date: Optional[date], end_date: Optional[date]):
    if not start_date or not end_date:
        raise HTTPException(status_code=400, detail="start_date and end_date are required")
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="End date cannot be before start date")


def get_percent_setting(db: Session, key: str, default: Decimal) -> Decimal:
    setting = db.query(tables.Setting).filter(tables.Setting.setting_key == key).first()
    if setting is None or setting.setting_value in (None, ""):
        return default
    try:
        return Decimal(str(setting.setting_value))
    except InvalidOperation:
        logger.warning(f"Setting {key} is not numeric: {setting.setting_value!r}; using {default}")
        return default


def _closed_in_range(query, start_date: date, end_date: date):
    return query.outerjoin(
        tables.PropertyStatus, tables.Property.status_id == tables.PropertyStatus.id
    ).filter(
        tables.Property.closed_date.isnot(None),
        tables.Property.closed_date >= start_date,
        tables.Property.closed_date <= end_date,
        or_(
            tables.PropertyStatus.id.is_(None),
            func.lower(tables.PropertyStatus.code).in_(sorted(TERMINAL_PROPERTY_STATUSES)),
            func.lower(tables.PropertyStatus.name).in_(sorted(TERMINAL_PROPERTY_STATUSES)),
        ),
    )


def sold_rented_label(property_type: Optional[str]) -> str:
    kind = (property_type or "").lower()
    if kind == "sale":
        return "Sold"
    if kind == "rent":
        return "Rented"
    return property_type or ""


# ===========================
# SALE & RENT SOURCE
# ===========================
def sale_rent_source(db: Session, agent_id: Optional[int], start_date: date, end_date: date) -> List[dict]:
    if not agent_id:
        raise HTTPException(status_code=400, detail="agent_id is required")
    validate_range(start_date, end_date)

    finders_percent = get_percent_setting(db, FINDERS_COMMISSION_KEY, DEFAULT_FINDERS_PERCENT)
    agent = aliased(tables.User)

    query = db.query(
        tables.Property,
        agent.name,
        tables.Lead.customer_name,
        tables.ReferenceSource.source_name,
    ).outerjoin(
        agent, tables.Property.agent_id == agent.id
    ).outerjoin(
        tables.Lead, tables.Property.owner_id == tables.Lead.id
    ).outerjoin(
        tables.ReferenceSource, tables.Lead.reference_source_id == tables.ReferenceSource.id
    ).filter(tables.Property.agent_id == agent_id)

    rows = _closed_in_range(query, start_date, end_date).order_by(
        tables.Property.closed_date.desc(), tables.Property.reference_number.asc()
    ).all()

    report = []
    for prop, agent_name, client_name, source_name in rows:
        price = Decimal(prop.price or 0)
        report.append({
            "closed_date": prop.closed_date,
            "agent_name": agent_name,
            "reference_number": prop.reference_number,
            "sold_rented": sold_rented_label(prop.property_type),
            "source_name": source_name or "None",
            "price": price,
            "finders_commission": (price * finders_percent / 100).quantize(CENT),
            "client_name": client_name or prop.owner_name,
        })
    return report


def sale_rent_source_table(rows: List[dict], start_date: date, end_date: date) -> TabularReport:
    return TabularReport(
        title="Sale & Rent Source Report",
        start_date=start_date,
        end_date=end_date,
        headers=["Date", "Agent Name", "Ref#", "Sold/Rented", "Source", "Find Com", "Client Name"],
        rows=[
            [
                row["closed_date"], row["agent_name"], row["reference_number"], row["sold_rented"],
                row["source_name"], row["finders_commission"], row["client_name"],
            ]
            for row in rows
        ],
    )


# ===========================
# OPERATIONS COMMISSION
# ===========================
def operations_commission(db: Session, start_date: date, end_date: date) -> dict:
    validate_range(start_date, end_date)
    percent = get_percent_setting(db, ADMINISTRATION_COMMISSION_KEY, DEFAULT_ADMINISTRATION_PERCENT)

    properties = _closed_in_range(db.query(tables.Property), start_date, end_date).order_by(
        tables.Property.closed_date.asc()
    ).all()

    sales = [p for p in properties if (p.property_type or "").lower() == "sale"]
    rents = [p for p in properties if (p.property_type or "").lower() == "rent"]
    sales_value = sum((Decimal(p.price or 0) for p in sales), Decimal("0"))
    rent_value = sum((Decimal(p.price or 0) for p in rents), Decimal("0"))

    return {
        "start_date": start_date,
        "end_date": end_date,
        "commission_percentage": percent,
        "total_properties_count": len(properties),
        "total_sales_count": len(sales),
        "total_rent_count": len(rents),
        "total_sales_value": sales_value,
        "total_rent_value": rent_value,
        "total_commission_amount": ((sales_value + rent_value) * percent / 100).quantize(CENT),
        "properties": [
            {
                "id": p.id,
                "reference_number": p.reference_number,
                "property_type": p.property_type,
                "closed_date": p.closed_date,
                "price": Decimal(p.price or 0),
                "commission": (Decimal(p.price or 0) * percent / 100).quantize(CENT),
            }
            for p in properties
        ],
    }


def operations_commission_table(summary: dict) -> TabularReport:
    return TabularReport(
        title="Operations Commission Report",
        start_date=summary["start_date"],
        end_date=summary["end_date"],
        headers=["Closed Date", "Ref#", "Type", "Price", "Commission"],
        rows=[
            [p["closed_date"], p["reference_number"], sold_rented_label(p["property_type"]), p["price"], p["commission"]]
            for p in summary["properties"]
        ],
        totals=["Total", f"{summary['total_properties_count']} properties", "",
                summary["total_sales_value"] + summary["total_rent_value"],
                summary["total_commission_amount"]],
    )
