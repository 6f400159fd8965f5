import asyncio
import io
from datetime import date
from decimal import Decimal

import pytest
from openpyxl import Workbook

from app.core.config import settings
from app.models import tables
from app.services.imports import pipeline
from app.services.imports.parser import ImportFileError, read_table
from app.services.imports.leads import LEAD_ALIASES, LeadImporter
from conftest import add_rows, load, make_lead, make_property, query_all

LEADS_CSV = "\n".join([
    "Date,Customer Name,Phone Number,Agent Name,Price,Source,Status,Code",
    "05/03/2024,Walid Karam,71123456,Nadia Frem,150000,fb,,L-1",
    "06/03/2024,,03123456,,,,,L-2",
    "05/03/2024,walid  karam,71 123 456,Nadia Frem,,fb,,L-3",
    ",Sara Nasr,70111222,Unknown Person,abc,Website,,L-4",
    "07/03/2024,Rami Zein,76555444,Tony Aoun,200000,insta,Closed,L-5",
]).encode()


def upload(client, path, content, filename="leads.csv", **params):
    return client.post(path, params=params, files={"file": (filename, content, "text/csv")})


# ===========================
# CLASSIFICATION
# ===========================
def row(number, key=None, errors=None):
    return pipeline.RowResult(row_number=number, original={}, key=key, errors=errors or [])


def test_classify_priority_invalid_then_duplicate_then_valid():
    results = [
        row(2, key="a"),
        row(3, key="a"),
        row(4, key="b", errors=["bad"]),
        row(5, key="existing"),
        row(6, key=None),
    ]

    pipeline.classify(results, {"existing"})

    assert [r.classification for r in results] == [
        pipeline.VALID, pipeline.DUPLICATE, pipeline.INVALID, pipeline.DUPLICATE, pipeline.VALID,
    ]
    summary = pipeline.summarize(results)
    assert (summary.total, summary.valid, summary.invalid, summary.duplicate) == (5, 2, 1, 2)
    assert summary.will_import_count == summary.valid


def test_invalid_row_never_counts_as_duplicate():
    results = pipeline.classify([row(2, key="a", errors=["x"]), row(3, key="a")], set())

    assert [r.classification for r in results] == [pipeline.INVALID, pipeline.VALID]


def test_flatten_errors_keeps_every_message():
    errors = pipeline.flatten_errors([row(2, errors=["a", "b"]), row(3), row(4, errors=["c"])])

    assert [(e.row, e.message) for e in errors] == [(2, "a"), (2, "b"), (4, "c")]


# ===========================
# PARSING
# ===========================
def test_read_table_maps_headers_and_ignores_legacy_columns():
    sheet = read_table("leads.csv", LEADS_CSV, LEAD_ALIASES)

    assert "Code" in sheet.ignored_headers
    assert sheet.rows[0].row_number == 2
    assert sheet.rows[0].values["customer_name"] == "Walid Karam"
    assert "code" not in sheet.rows[0].values
    assert sheet.rows[0].original["Code"] == "L-1"


def test_read_table_xlsx_first_sheet_only():
    workbook = Workbook()
    first = workbook.active
    first.title = "Leads"
    first.append(["Customer Name", "Phone"])
    first.append(["Walid Karam", 71123456])
    workbook.create_sheet("Archive").append(["ignored"])
    buffer = io.BytesIO()
    workbook.save(buffer)

    sheet = read_table("leads.xlsx", buffer.getvalue(), LEAD_ALIASES)

    assert sheet.sheet_warning == 'Workbook has 2 sheets; only the first sheet "Leads" was imported'
    assert sheet.rows[0].row_number == 2
    assert sheet.rows[0].values["phone_number"] == 71123456


def test_read_table_rejects_unusable_files():
    with pytest.raises(ImportFileError):
        read_table("leads.pdf", b"x", LEAD_ALIASES)
    with pytest.raises(ImportFileError, match="No recognized columns"):
        read_table("leads.csv", b"Foo,Bar\n1,2\n", LEAD_ALIASES)
    with pytest.raises(ImportFileError, match="empty"):
        read_table("leads.csv", b"\n,,\n", LEAD_ALIASES)


# ===========================
# LEAD IMPORT API
# ===========================
def test_dry_run_is_the_default_and_writes_nothing(client):
    response = upload(client, "/api/leads/import", LEADS_CSV)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["dryRun"] is True
    assert data["summary"] == {"total": 5, "valid": 2, "invalid": 2, "duplicate": 1, "willImportCount": 2}
    assert [r["classification"] for r in data["rowsPreview"]] == [
        "valid", "invalid", "duplicate", "invalid", "valid",
    ]
    assert {"row": 3, "message": "Customer name is required"} in data["errors"]
    assert {"row": 5, "message": 'Price must be numeric "abc"'} in data["errors"]
    assert data["rowsPreview"][0]["normalized"]["phone_number"] == "+96171123456"
    assert data["rowsPreview"][0]["resolved"]["agent_name"] == "Nadia Frem"
    assert query_all(tables.Lead) == []


def test_commit_imports_exactly_the_valid_rows(client, ids):
    preview = upload(client, "/api/leads/import", LEADS_CSV).json()["data"]

    response = upload(client, "/api/leads/import", LEADS_CSV, dryRun="false")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["importedCount"] == preview["summary"]["willImportCount"] == 2
    assert data["skippedDuplicatesCount"] == 1
    assert data["errorCount"] == 2

    leads = query_all(tables.Lead)
    assert [lead.customer_name for lead in leads] == ["Walid Karam", "Rami Zein"]
    assert leads[0].agent_id == ids["agent"]
    assert leads[0].reference_source_id == ids["facebook"]
    assert leads[0].added_by_id == ids["admin"]
    assert leads[1].status_id == ids["closed"]
    assert [s.source_name for s in query_all(tables.ReferenceSource, tables.ReferenceSource.source_name == "Instagram")] == ["Instagram"]
    history = query_all(tables.LeadReferral, tables.LeadReferral.lead_id == leads[0].id)
    assert [(h.status, h.agent_id) for h in history] == [("confirmed", ids["agent"])]


def test_rows_matching_existing_leads_are_skipped(client, ids):
    make_lead(ids, customer_name="Walid Karam", phone_number="+96171123456", date=date(2024, 3, 5))

    data = upload(client, "/api/leads/import", LEADS_CSV).json()["data"]

    assert data["summary"]["duplicate"] == 2
    assert data["summary"]["willImportCount"] == 1


def test_import_rejects_bad_uploads(client):
    assert upload(client, "/api/leads/import", b"x", filename="leads.txt").status_code == 400
    assert upload(client, "/api/leads/import", b"", filename="leads.csv").json()["message"] == "Uploaded file is empty"
    assert upload(client, "/api/leads/import", LEADS_CSV, mode="overwrite").status_code == 400
    assert upload(client, "/api/leads/import", b"Foo\n1\n").status_code == 400


def test_import_rejects_files_over_the_size_cap(client, monkeypatch):
    monkeypatch.setattr(settings, "max_import_file_size", 16)

    response = upload(client, "/api/leads/import", LEADS_CSV)

    assert response.status_code == 413
    assert response.json()["success"] is False
    assert query_all(tables.Lead) == []


def test_price_overflow_is_reported_on_its_row(client):
    content = "\n".join([
        "Date,Customer Name,Phone Number,Agent Name,Price,Source",
        "05/03/2024,Walid Karam,71123456,Nadia Frem,1e30,fb",
        "07/03/2024,Rami Zein,76555444,Tony Aoun,200000,insta",
    ]).encode()

    preview = upload(client, "/api/leads/import", content)

    assert preview.status_code == 200
    data = preview.json()["data"]
    assert data["summary"]["invalid"] == 1
    assert data["summary"]["valid"] == 1
    assert data["errors"] == [{"row": 2, "message": "Price exceeds max (999,999,999.99)"}]

    committed = upload(client, "/api/leads/import", content, dryRun="false").json()["data"]

    assert committed["importedCount"] == 1
    assert committed["errorCount"] == 1
    assert [lead.customer_name for lead in query_all(tables.Lead)] == ["Rami Zein"]


def test_upsert_updates_the_matching_lead(client, ids):
    lead_id = make_lead(ids, agent="agent2", customer_name="Walid Karam", phone_number="+96171123456", date=date(2024, 3, 5))

    response = upload(client, "/api/leads/import", LEADS_CSV, dryRun="false", mode="upsert")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["importedCount"] == 1
    assert data["updatedCount"] == 2
    assert data["skippedDuplicatesCount"] == 0
    assert data["errorCount"] == 2
    assert [u["id"] for u in data["updated"]] == [lead_id, lead_id]

    leads = query_all(tables.Lead)
    assert [lead.customer_name for lead in leads] == ["Walid Karam", "Rami Zein"]
    updated = load(tables.Lead, lead_id)
    # The second matching row has a blank price
    assert float(updated.price) == 150000
    assert updated.agent_id == ids["agent"]
    assert updated.agent_name == "Nadia Frem"
    assert updated.reference_source_id == ids["facebook"]
    assert updated.status_id == ids["active"]
    history = query_all(tables.LeadReferral, tables.LeadReferral.lead_id == lead_id)
    assert [(h.status, h.agent_id) for h in history] == [("confirmed", ids["agent"])]


def test_skip_mode_reports_no_updates(client, ids):
    make_lead(ids, customer_name="Walid Karam", phone_number="+96171123456", date=date(2024, 3, 5), price=90000)

    data = upload(client, "/api/leads/import", LEADS_CSV, dryRun="false", mode="SKIP").json()["data"]

    assert data["updatedCount"] == 0
    assert data["updated"] == []
    assert data["skippedDuplicatesCount"] == 2
    assert float(query_all(tables.Lead)[0].price) == 90000


def test_import_work_runs_off_the_event_loop(client, monkeypatch):
    seen = []
    original = LeadImporter.commit

    def commit(self, *args, **kwargs):
        try:
            asyncio.get_running_loop()
            seen.append("event loop")
        except RuntimeError:
            seen.append("worker thread")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(LeadImporter, "commit", commit)

    response = upload(client, "/api/leads/import", LEADS_CSV, dryRun="false")

    assert response.status_code == 200
    assert seen == ["worker thread"]


def test_import_requires_capability(client, actor):
    actor.use("agent")

    assert upload(client, "/api/leads/import", LEADS_CSV).status_code == 403


# ===========================
# PROPERTY IMPORT API
# ===========================
PROPERTIES_CSV = "\n".join([
    "Date,Reference,Status,Location,Category,Owner Name,Phone Number,Surface,Price,Agent Name,View,Concierge",
    "10/01/2024,FSAP24001,,Achrafieh,apartment,Fadi Sleiman,03111222,180,450000,Nadia Frem,sea,yes",
    "11/01/2024,,Sold,Jounieh,villa,Hiba Tannous,70999888,400,,Tony Aoun,,no",
    "12/01/2024,FSAP24001,,Achrafieh,apt,Fadi Sleiman,03111222,180,450000,Nadia Frem,,",
    "13/01/2024,,,Beirut,office,Omar Fakhoury,70123123,,100000,,,",
]).encode()


def test_property_import_commit(client, ids):
    (active_id,) = add_rows(tables.PropertyStatus(name="Active", code="active"))

    response = upload(client, "/api/properties/import", PROPERTIES_CSV, filename="properties.csv", dryRun="0")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["importedCount"] == 2
    assert data["skippedDuplicatesCount"] == 1
    assert data["errorCount"] == 1
    assert {"row": 5, "message": "Surface is required"} in data["errors"]

    first, second = query_all(tables.Property)
    assert first.reference_number == "FSAP24001"
    assert first.status_id == active_id
    assert first.view_type == "sea view"
    assert first.concierge is True
    assert first.owner_id is not None
    # Villa is not configured, so the category falls back to Other
    assert second.category_id == ids["other"]
    assert second.status_id == ids["sold"]
    assert float(second.price) == 0
    assert second.reference_number == f"FSOT24{second.id:03d}"

    owners = query_all(tables.Lead)
    assert sorted(o.customer_name for o in owners) == ["Fadi Sleiman", "Hiba Tannous"]


def test_property_duplicates_without_reference_use_owner_phone_location(client, ids):
    add_rows(tables.PropertyStatus(name="Active", code="active"))
    make_property(ids, owner_name="Omar Fakhoury", phone_number="+96170123123", location="Beirut")
    make_property(ids, owner_name="Karim Bitar", phone_number=None, location="Verdun")
    content = "\n".join([
        "Date,Location,Category,Owner Name,Phone Number,Surface,Price",
        "10/01/2024,Beirut,apartment,Omar Fakhoury,70123123,120,300000",
        "11/01/2024,Hamra,apartment,Nour Haddad,71222333,90,200000",
        "12/01/2024,Hamra,apartment,nour  haddad,71 222 333,90,200000",
        "13/01/2024,Verdun,apartment,KARIM BITAR,,150,350000",
    ]).encode()

    data = upload(client, "/api/properties/import", content, filename="properties.csv").json()["data"]

    assert data["summary"]["total"] == 4
    assert data["summary"]["valid"] == 1
    assert data["summary"]["duplicate"] == 3
    assert [r["classification"] for r in data["rowsPreview"]] == ["duplicate", "valid", "duplicate", "duplicate"]


def test_property_upsert_matches_by_reference(client, ids):
    (active_id,) = add_rows(tables.PropertyStatus(name="Active", code="active"))
    property_id = make_property(ids, agent="agent2", reference_number="FSAP24001", price=Decimal("100000"))

    response = upload(
        client, "/api/properties/import", PROPERTIES_CSV, filename="properties.csv", dryRun="false", mode="upsert",
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["importedCount"] == 1
    assert data["updatedCount"] == 2
    assert data["errorCount"] == 1
    assert [u["referenceNumber"] for u in data["updated"]] == ["FSAP24001", "FSAP24001"]

    assert len(query_all(tables.Property)) == 2
    updated = load(tables.Property, property_id)
    assert float(updated.price) == 450000
    assert float(updated.surface) == 180
    assert updated.agent_id == ids["agent"]
    assert updated.agent_name == "Nadia Frem"
    assert updated.status_id == active_id
    assert updated.closed_date is None
