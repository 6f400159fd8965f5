"""
Shared import pipeline: parse, normalize and resolve each row, then
classify it and either preview or commit.

Every row lands in exactly one bucket. Priority is invalid, then
duplicate, then valid. Committing inserts valid rows. Duplicates are
skipped, or in upsert mode update the record they match. Each write runs in its own SAVEPOINT,
so one failed row leaves earlier rows in place.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Hashable, List, Optional, Set

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from app.core.errors import FOREIGN_KEY_VIOLATION, UNIQUE_VIOLATION, constraint_violation_code
from app.models import tables
from app.schemas import (
    ImportCommitResponse, ImportPreviewResponse, ImportPreviewRow, ImportRowError, ImportSummary,
)
from app.services.imports.parser import ParsedRow, ParsedSheet, read_table

logger = logging.getLogger(__name__)

VALID = "valid"
INVALID = "invalid"
DUPLICATE = "duplicate"

SKIP = "skip"
UPSERT = "upsert"

PREVIEW_ROW_LIMIT = 50


@dataclass
class RowResult:
    row_number: int
    original: Dict[str, Any]
    normalized: Dict[str, Any] = field(default_factory=dict)
    resolved: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    key: Optional[Hashable] = None
    classification: str = VALID

    def take(self, result, warnings_only: bool = False):
        """Collect a Normalized/Match outcome and return its value."""
        if result.warning:
            self.warnings.append(result.warning)
        if result.error and not warnings_only:
            self.errors.append(result.error)
        return getattr(result, "value", None)


def jsonable(value):
    if isinstance(value, date):
        return value.isoformat()
    if hasattr(value, "is_finite"):
        return float(value)
    return value


def classify(results: List[RowResult], existing_keys: Set[Hashable]) -> List[RowResult]:
    seen = set()
    for result in results:
        if result.errors:
            result.classification = INVALID
            continue
        if result.key is not None and (result.key in existing_keys or result.key in seen):
            result.classification = DUPLICATE
            continue
        result.classification = VALID
        if result.key is not None:
            seen.add(result.key)
    return results


def summarize(results: List[RowResult]) -> ImportSummary:
    valid = sum(1 for r in results if r.classification == VALID)
    return ImportSummary(
        total=len(results),
        valid=valid,
        invalid=sum(1 for r in results if r.classification == INVALID),
        duplicate=sum(1 for r in results if r.classification == DUPLICATE),
        will_import_count=valid,
    )


def flatten_errors(results: List[RowResult]) -> List[ImportRowError]:
    return [
        ImportRowError(row=result.row_number, message=message)
        for result in results
        for message in result.errors
    ]


class SpreadsheetImporter:
    """
    Base class for one entity's import. Subclasses supply the header aliases,
    per-row processing, the natural key and the insert.
    """

    entity = "record"
    aliases: Dict[str, str] = {}

    def __init__(self, context, today: Optional[date] = None):
        self.context = context
        self.today = today or date.today()

    # --- entity hooks ---------------------------------------------------
    def process_row(self, row: ParsedRow, previous_date: Optional[date]) -> RowResult:
        raise NotImplementedError

    def existing_keys(self, db: Session, results: List[RowResult]) -> Set[Hashable]:
        raise NotImplementedError

    def insert(self, db: Session, result: RowResult, user: tables.User) -> Dict[str, Any]:
        raise NotImplementedError

    def find_existing(self, db: Session, result: RowResult):
        """Persisted record a duplicate row would update in upsert mode, if any."""
        return None

    def update(self, db: Session, existing, result: RowResult, user: tables.User) -> Dict[str, Any]:
        raise NotImplementedError

    # --- pipeline -------------------------------------------------------
    def parse(self, filename: str, content: bytes) -> ParsedSheet:
        return read_table(filename, content, self.aliases)

    def process(self, sheet: ParsedSheet) -> List[RowResult]:
        results = []
        previous_date = None
        for row in sheet.rows:
            result = self.process_row(row, previous_date)
            row_date = result.normalized.get("date")
            if isinstance(row_date, date):
                previous_date = row_date
            results.append(result)
        return results

    def evaluate(self, db: Session, filename: str, content: bytes):
        sheet = self.parse(filename, content)
        results = self.process(sheet)
        classify(results, self.existing_keys(db, results))
        return sheet, results

    def preview(self, db: Session, filename: str, content: bytes) -> ImportPreviewResponse:
        sheet, results = self.evaluate(db, filename, content)
        summary = summarize(results)
        logger.info(
            f"{self.entity} import dry run: total={summary.total} valid={summary.valid} "
            f"invalid={summary.invalid} duplicate={summary.duplicate}"
        )
        return ImportPreviewResponse(
            dry_run=True,
            summary=summary,
            rows_preview=[
                ImportPreviewRow(
                    row=r.row_number,
                    classification=r.classification,
                    original=r.original,
                    normalized={k: jsonable(v) for k, v in r.normalized.items()},
                    resolved=r.resolved,
                    warnings=r.warnings,
                    errors=r.errors,
                )
                for r in results[:PREVIEW_ROW_LIMIT]
            ],
            errors=flatten_errors(results),
            sheet_warning=sheet.sheet_warning,
        )

    def commit(
        self, db: Session, filename: str, content: bytes, user: tables.User, mode: str = SKIP,
    ) -> ImportCommitResponse:
        sheet, results = self.evaluate(db, filename, content)

        imported, updated, skipped, errors = [], [], [], flatten_errors(results)
        error_count = sum(1 for r in results if r.classification == INVALID)

        for result in results:
            if result.classification == INVALID:
                continue
            existing = None
            if result.classification == DUPLICATE:
                existing = self.find_existing(db, result) if mode == UPSERT else None
                if existing is None:
                    skipped.append({"row": result.row_number, "key": str(result.key)})
                    continue
            try:
                with db.begin_nested():
                    if existing is None:
                        imported.append(self.insert(db, result, user))
                    else:
                        updated.append(self.update(db, existing, result, user))
            except IntegrityError as e:
                code = constraint_violation_code(e)
                if code == UNIQUE_VIOLATION:
                    message = f"{self.entity.capitalize()} already exists"
                elif code == FOREIGN_KEY_VIOLATION:
                    message = "Referenced record no longer exists"
                else:
                    message = "Database constraint violation"
                logger.warning(f"{self.entity} import row {result.row_number} rejected: {e}")
                errors.append(ImportRowError(row=result.row_number, message=message))
                error_count += 1
            except SQLAlchemyError as e:
                logger.error(f"{self.entity} import row {result.row_number} failed: {e}")
                errors.append(ImportRowError(row=result.row_number, message="Database error occurred"))
                error_count += 1

        db.commit()
        logger.info(
            f"{self.entity} import ({mode}) by user {user.id}: imported={len(imported)} "
            f"updated={len(updated)} skipped={len(skipped)} errors={error_count}"
        )
        return ImportCommitResponse(
            imported_count=len(imported),
            updated_count=len(updated),
            skipped_duplicates_count=len(skipped),
            error_count=error_count,
            imported=imported,
            updated=updated,
            skipped_duplicates=skipped,
            errors=errors,
            sheet_warning=sheet.sheet_warning,
        )
