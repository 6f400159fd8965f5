from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session
import logging

from app.core.database import get_db
from app.core.permissions import Capability, check_capability, require_capability
from app.models import tables
from app.services import reports
from app.utils.exporters import PDF_MEDIA_TYPE, XLSX_MEDIA_TYPE, TabularReport, build_pdf, build_workbook

router = APIRouter()
logger = logging.getLogger(__name__)

EXPORT_FORMATS = {
    "xlsx": (XLSX_MEDIA_TYPE, build_workbook),
    "pdf": (PDF_MEDIA_TYPE, build_pdf),
}


def _export(report: TabularReport, export_format: str, basename: str) -> Response:
    if export_format not in EXPORT_FORMATS:
        raise HTTPException(status_code=400, detail="format must be one of: xlsx, pdf")
    media_type, builder = EXPORT_FORMATS[export_format]
    filename = f"{basename}_{report.start_date.isoformat()}_{report.end_date.isoformat()}.{export_format}"
    return Response(
        content=builder(report),
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ===========================
# SALE & RENT SOURCE
# ===========================
@router.get("/sale-rent-source")
def sale_rent_source_report(
    agent_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_REPORTS)),
):
    rows = reports.sale_rent_source(db, agent_id, start_date, end_date)
    return {"success": True, "data": rows}


@router.get("/sale-rent-source/export")
def export_sale_rent_source(
    agent_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    export_format: str = Query("xlsx", alias="format"),
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_REPORTS)),
):
    rows = reports.sale_rent_source(db, agent_id, start_date, end_date)
    logger.info(f"Sale & rent source report ({export_format}) exported by {current_user.email}")
    return _export(reports.sale_rent_source_table(rows, start_date, end_date), export_format, "sale_rent_source")


# ===========================
# OPERATIONS COMMISSION
# ===========================
@router.get("/operations-commission")
def operations_commission_report(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_REPORTS)),
):
    check_capability(current_user, Capability.VIEW_FINANCIAL_DATA)
    return {"success": True, "data": reports.operations_commission(db, start_date, end_date)}


@router.get("/operations-commission/export")
def export_operations_commission(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    export_format: str = Query("xlsx", alias="format"),
    db: Session = Depends(get_db),
    current_user: tables.User = Depends(require_capability(Capability.VIEW_REPORTS)),
):
    check_capability(current_user, Capability.VIEW_FINANCIAL_DATA)
    summary = reports.operations_commission(db, start_date, end_date)
    logger.info(f"Operations commission report ({export_format}) exported by {current_user.email}")
    return _export(reports.operations_commission_table(summary), export_format, "operations_commission")
