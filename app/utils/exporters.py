"""Excel and PDF renderings of tabular reports."""

import io
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MEDIA_TYPE = "application/pdf"

HEADER_ROW = 4
HEADER_FILL = "E5F0FF"


@dataclass
class TabularReport:
    title: str
    start_date: date
    end_date: date
    headers: List[str]
    rows: List[Sequence[Any]] = field(default_factory=list)
    totals: Optional[Sequence[Any]] = None

    @property
    def period(self) -> str:
        return f"Period: {self.start_date.isoformat()} to {self.end_date.isoformat()}"


def _cell(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.date()
    return value


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (Decimal, float)):
        return f"{value:,.2f}"
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value)


# ===========================
# EXCEL
# ===========================
def build_workbook(report: TabularReport) -> bytes:
    """Title (merged) on row 1, period on row 2, header on row 4, data below."""
    wb = Workbook()
    ws = wb.active
    ws.title = report.title[:31]

    last_column = get_column_letter(len(report.headers))
    ws.merge_cells(f"A1:{last_column}1")
    ws["A1"] = report.title
    ws["A1"].font = Font(bold=True, size=14)
    ws["A1"].alignment = Alignment(horizontal="center")
    ws["A2"] = report.period
    ws["A2"].font = Font(italic=True, size=10)

    header_fill = PatternFill(start_color=HEADER_FILL, end_color=HEADER_FILL, fill_type="solid")
    header_font = Font(bold=True, size=11)
    for col_idx, header in enumerate(report.headers, start=1):
        cell = ws.cell(row=HEADER_ROW, column=col_idx, value=header)
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="left", vertical="center")

    row_idx = HEADER_ROW
    for row_idx, row in enumerate(report.rows, start=HEADER_ROW + 1):
        for col_idx, value in enumerate(row, start=1):
            ws.cell(row=row_idx, column=col_idx, value=_cell(value))

    if report.totals:
        total_row = row_idx + 1
        for col_idx, value in enumerate(report.totals, start=1):
            cell = ws.cell(row=total_row, column=col_idx, value=_cell(value))
            cell.font = Font(bold=True)

    # Auto-width
    for col_idx, header in enumerate(report.headers, start=1):
        values = [header] + [_text(row[col_idx - 1]) for row in report.rows if len(row) >= col_idx]
        width = max(len(str(v)) for v in values)
        ws.column_dimensions[get_column_letter(col_idx)].width = min(width + 2, 50)

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


# ===========================
# PDF
# ===========================
def build_pdf(report: TabularReport) -> bytes:
    """Paginated table; the header row repeats on every page."""
    output = io.BytesIO()
    doc = SimpleDocTemplate(
        output,
        pagesize=landscape(A4),
        leftMargin=12 * mm,
        rightMargin=12 * mm,
        topMargin=12 * mm,
        bottomMargin=12 * mm,
        title=report.title,
    )
    styles = getSampleStyleSheet()

    data = [list(report.headers)] + [[_text(v) for v in row] for row in report.rows]
    if report.totals:
        data.append([_text(v) for v in report.totals])

    table = Table(data, repeatRows=1)
    style = [
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
        ('FONTSIZE', (0, 0), (-1, -1), 8.5),
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor(f"#{HEADER_FILL}")),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.lightgrey),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.whitesmoke]),
    ]
    if report.totals:
        style.append(('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'))
    table.setStyle(TableStyle(style))

    elements = [
        Paragraph(report.title, styles['Title']),
        Paragraph(report.period, styles['Normal']),
        Spacer(1, 6 * mm),
        table,
    ]
    doc.build(elements)
    return output.getvalue()
