"""Read the first worksheet of an .xlsx file (or a CSV table) into header-keyed rows."""

import csv
import io
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

ALLOWED_EXTENSIONS = (".xlsx", ".csv")


class ImportFileError(ValueError):
    """The upload cannot be processed at all."""


@dataclass
class ParsedRow:
    row_number: int
    values: Dict[str, Any]          # canonical field -> raw cell value
    original: Dict[str, Any]        # header text -> printable cell value


@dataclass
class ParsedSheet:
    sheet_name: Optional[str]
    headers: List[str]
    rows: List[ParsedRow] = field(default_factory=list)
    sheet_warning: Optional[str] = None
    ignored_headers: List[str] = field(default_factory=list)


def header_key(header) -> str:
    """'Customer Name', 'customer_name' and ' CUSTOMER-NAME ' all become 'customername'."""
    text = str(header or "").replace("\u00a0", " ").replace("\ufeff", "")
    return re.sub(r"[^a-z0-9]", "", text.lower())


def printable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def check_extension(filename: Optional[str]) -> str:
    name = (filename or "").lower()
    for extension in ALLOWED_EXTENSIONS:
        if name.endswith(extension):
            return extension
    raise ImportFileError("Invalid file type. Only .xlsx and .csv files are allowed")


# ===========================
# READERS
# ===========================
def _read_xlsx(content: bytes):
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError, ValueError) as e:
        raise ImportFileError(f"Unable to read spreadsheet: {e}")

    try:
        sheet_names = workbook.sheetnames
        if not sheet_names:
            raise ImportFileError("The workbook contains no worksheets")
        worksheet = workbook[sheet_names[0]]
        rows = [list(row) for row in worksheet.iter_rows(values_only=True)]
    finally:
        workbook.close()

    warning = None
    if len(sheet_names) > 1:
        warning = (
            f'Workbook has {len(sheet_names)} sheets; only the first sheet '
            f'"{sheet_names[0]}" was imported'
        )
    return sheet_names[0], rows, warning


def _decode(content: bytes) -> str:
    for encoding in ("utf-8-sig", "cp1252", "latin-1"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ImportFileError("Unable to decode CSV file")


def _read_csv(content: bytes):
    text = _decode(content)
    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    try:
        rows = [row for row in csv.reader(io.StringIO(text), dialect)]
    except csv.Error as e:
        raise ImportFileError(f"Unable to read CSV file: {e}")
    return None, rows, None


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def read_table(filename: str, content: bytes, aliases: Dict[str, str]) -> ParsedSheet:
    """
    Parse the upload and map recognized headers onto canonical field names.

    ``aliases`` maps header_key() output to a field name. Headers missing
    from it are ignored.
    """
    extension = check_extension(filename)
    if extension == ".xlsx":
        sheet_name, raw_rows, warning = _read_xlsx(content)
    else:
        sheet_name, raw_rows, warning = _read_csv(content)

    # 1. Header is the first non-empty row
    header_index = next(
        (i for i, row in enumerate(raw_rows) if any(not _is_blank(cell) for cell in row)),
        None,
    )
    if header_index is None:
        raise ImportFileError("The file is empty")

    headers = [str(cell).strip() if cell is not None else "" for cell in raw_rows[header_index]]
    columns = {}
    ignored = []
    for position, header in enumerate(headers):
        field_name = aliases.get(header_key(header))
        if field_name and field_name not in columns.values():
            columns[position] = field_name
        elif header:
            ignored.append(header)

    if not columns:
        raise ImportFileError("No recognized columns found in the header row")

    sheet = ParsedSheet(
        sheet_name=sheet_name,
        headers=headers,
        sheet_warning=warning,
        ignored_headers=ignored,
    )

    # 2. Data rows (spreadsheet numbering, header row included)
    for offset, row in enumerate(raw_rows[header_index + 1:], start=header_index + 2):
        if all(_is_blank(cell) for cell in row):
            continue
        values = {}
        original = {}
        for position, header in enumerate(headers):
            cell = row[position] if position < len(row) else None
            if header:
                original[header] = printable(cell)
            if position in columns:
                values[columns[position]] = cell
        sheet.rows.append(ParsedRow(row_number=offset, values=values, original=original))

    return sheet
