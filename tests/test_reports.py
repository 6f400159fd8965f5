import io
from datetime import date
from decimal import Decimal

from openpyxl import load_workbook

from app.services.reports import sold_rented_label
from app.utils.exporters import TabularReport, build_pdf, build_workbook
from conftest import make_lead, make_property

MAY = {"start_date": "2024-05-01", "end_date": "2024-05-31"}


def seed_closings(ids):
    owner = make_lead(ids, agent="agent", reference_source_id=ids["facebook"])
    make_property(ids, agent="agent", status="sold", reference_number="FSAP24001",
                  closed_date=date(2024, 5, 10), owner_id=owner, price=Decimal("250000"))
    make_property(ids, agent="agent", status="rented", property_type="rent", reference_number="FRAP24002",
                  closed_date=date(2024, 5, 20), owner_name="Samir Azar", price=Decimal("12000"))
    # Outside the window, or not closed
    make_property(ids, agent="agent", status="sold", reference_number="FSAP24003",
                  closed_date=date(2024, 6, 2), price=Decimal("90000"))
    make_property(ids, agent="agent", status="available", reference_number="FSAP24004",
                  closed_date=date(2024, 5, 15), price=Decimal("70000"))
    make_property(ids, agent="agent2", status="sold", reference_number="FSAP24005",
                  closed_date=date(2024, 5, 12), price=Decimal("100000"))


def test_sale_rent_source_rows(client, ids):
    seed_closings(ids)

    response = client.get("/api/reports/sale-rent-source", params={"agent_id": ids["agent"], **MAY})

    assert response.status_code == 200
    rows = response.json()["data"]
    assert [r["reference_number"] for r in rows] == ["FRAP24002", "FSAP24001"]
    rented, sold = rows
    assert sold["sold_rented"] == "Sold"
    assert sold["source_name"] == "Facebook"
    assert sold["client_name"] == "Walid Karam"
    assert sold["agent_name"] == "Nadia Frem"
    assert float(sold["finders_commission"]) == 2500.0
    assert rented["sold_rented"] == "Rented"
    assert rented["source_name"] == "None"
    assert rented["client_name"] == "Samir Azar"


def test_finders_percentage_comes_from_settings(client, ids):
    seed_closings(ids)
    client.put("/api/settings/commission_finders", json={"setting_value": "2.5"})

    rows = client.get("/api/reports/sale-rent-source", params={"agent_id": ids["agent"], **MAY}).json()["data"]

    assert float(rows[1]["finders_commission"]) == 6250.0


def test_report_parameters_are_validated(client, ids):
    missing_agent = client.get("/api/reports/sale-rent-source", params=MAY)
    missing_dates = client.get("/api/reports/operations-commission")
    reversed_dates = client.get(
        "/api/reports/operations-commission", params={"start_date": "2024-05-31", "end_date": "2024-05-01"},
    )

    assert missing_agent.json()["message"] == "agent_id is required"
    assert missing_dates.json()["message"] == "start_date and end_date are required"
    assert reversed_dates.status_code == 400
    assert reversed_dates.json()["message"] == "End date cannot be before start date"


def test_operations_commission_totals(client, ids):
    seed_closings(ids)
    client.put("/api/settings/commission_administration_percentage", json={"setting_value": "2"})

    data = client.get("/api/reports/operations-commission", params=MAY).json()["data"]

    assert data["total_properties_count"] == 3
    assert data["total_sales_count"] == 2
    assert data["total_rent_count"] == 1
    assert float(data["total_sales_value"]) == 350000.0
    assert float(data["total_rent_value"]) == 12000.0
    assert float(data["total_commission_amount"]) == 7240.0
    assert [p["reference_number"] for p in data["properties"]] == ["FSAP24001", "FSAP24005", "FRAP24002"]


def test_commission_defaults_to_zero_percent(client, ids):
    seed_closings(ids)

    data = client.get("/api/reports/operations-commission", params=MAY).json()["data"]

    assert float(data["total_commission_amount"]) == 0.0


def test_report_access(client, actor, ids):
    actor.use("accountant")
    assert client.get("/api/reports/operations-commission", params=MAY).status_code == 200

    actor.use("agent")
    assert client.get("/api/reports/sale-rent-source", params={"agent_id": ids["agent"], **MAY}).status_code == 403

    actor.use("operations")
    assert client.get("/api/reports/operations-commission", params=MAY).status_code == 403


# ===========================
# EXPORTS
# ===========================
def test_export_workbook(client, ids):
    seed_closings(ids)

    response = client.get(
        "/api/reports/sale-rent-source/export", params={"agent_id": ids["agent"], "format": "xlsx", **MAY},
    )

    assert response.status_code == 200
    assert response.headers["content-disposition"] == (
        'attachment; filename="sale_rent_source_2024-05-01_2024-05-31.xlsx"'
    )
    sheet = load_workbook(io.BytesIO(response.content)).active
    assert sheet["A1"].value == "Sale & Rent Source Report"
    assert sheet["A2"].value == "Period: 2024-05-01 to 2024-05-31"
    assert [c.value for c in sheet[4]] == ["Date", "Agent Name", "Ref#", "Sold/Rented", "Source", "Find Com", "Client Name"]
    assert sheet["C5"].value == "FRAP24002"
    assert sheet["F6"].value == 2500


def test_export_pdf(client, ids):
    seed_closings(ids)

    response = client.get("/api/reports/operations-commission/export", params={"format": "pdf", **MAY})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


def test_unknown_export_format(client, ids):
    response = client.get("/api/reports/operations-commission/export", params={"format": "csv", **MAY})

    assert response.status_code == 400
    assert response.json()["message"] == "format must be one of: xlsx, pdf"


def test_workbook_totals_row():
    report = TabularReport(
        title="Operations Commission Report",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 31),
        headers=["Closed Date", "Ref#", "Type", "Price", "Commission"],
        rows=[[date(2024, 1, 5), "FSAP24001", "Sold", Decimal("1000.00"), Decimal("20.00")]],
        totals=["Total", "1 properties", "", Decimal("1000.00"), Decimal("20.00")],
    )

    sheet = load_workbook(io.BytesIO(build_workbook(report))).active

    assert sheet["A6"].value == "Total"
    assert sheet["E6"].value == 20
    assert sheet["A6"].font.bold
    assert build_pdf(report).startswith(b"%PDF")


def test_sold_rented_label():
    assert sold_rented_label("sale") == "Sold"
    assert sold_rented_label("RENT") == "Rented"
    assert sold_rented_label(None) == ""
