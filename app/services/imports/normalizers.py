"""
Cell normalizers for spreadsheet imports.

Each normalizer returns a Normalized(value, warning, error). Warnings leave
the row importable. Errors exclude it.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

EMPTY_VALUES = {"", "n/a", "na", "null", "none", "-", "—"}
EXCEL_EPOCH = date(1899, 12, 30)
MAX_PRICE = Decimal("999999999.99")
MAX_SURFACE = Decimal("10000")
VIEW_TYPES = ("open view", "sea view", "mountain view", "no view")
YES_VALUES = {"yes", "y", "true", "1", "oui"}
NO_VALUES = {"no", "n", "false", "0", "non"}

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d-%b-%Y",
    "%d %b %Y",
    "%d %B %Y",
)
SHORT_YEAR_FORMATS = (
    "%d/%m/%y",
    "%d-%m-%y",
    "%d.%m.%y",
    "%d-%b-%y",
    "%d %b %y",
)


@dataclass
class Normalized:
    value: Any = None
    warning: Optional[str] = None
    error: Optional[str] = None


def is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in EMPTY_VALUES
    return False


def clean_text(value) -> Optional[str]:
    """Trimmed, whitespace-collapsed text, or None for empty markers."""
    if is_empty(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = re.sub(r"\s+", " ", str(value)).strip()
    return text or None


# ===========================
# DATES
# ===========================
def parse_date(value) -> Optional[date]:
    if is_empty(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_excel_serial(value)

    text = str(value).strip()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return _from_excel_serial(float(text))
    if re.match(r"^\d{4}-\d{2}-\d{2}[T ]", text):
        text = text[:10]

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    for fmt in SHORT_YEAR_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt).date()
        except ValueError:
            continue
        # Two-digit years are always 20xx
        return parsed.replace(year=2000 + parsed.year % 100)
    return None


def _from_excel_serial(serial) -> Optional[date]:
    if serial < 1 or serial > 2958465:
        return None
    return EXCEL_EPOCH + timedelta(days=int(serial))


def normalize_date(value, fallback: Optional[date] = None, today: Optional[date] = None) -> Normalized:
    """Parsed date, or the fallback (previous row, else today) with a warning."""
    parsed = parse_date(value)
    if parsed is not None:
        return Normalized(parsed)
    substitute = fallback or today or date.today()
    source = "previous row date" if fallback else "today"
    if is_empty(value):
        return Normalized(substitute, warning=f"Date missing; used {source}")
    return Normalized(substitute, warning=f'Unrecognized date "{value}"; used {source}')


def year_from_reference(reference) -> Optional[int]:
    """FSA23002 -> 2023."""
    text = clean_text(reference)
    if not text:
        return None
    match = re.search(r"[A-Za-z]{2,6}(\d{2})", text)
    if not match:
        return None
    return 2000 + int(match.group(1))


def correct_year_from_reference(result: Normalized, reference, today: Optional[date] = None) -> Normalized:
    inferred = year_from_reference(reference)
    if not inferred or not isinstance(result.value, date):
        return result
    year = result.value.year
    max_year = (today or date.today()).year + 1
    far_off = abs(year - inferred) >= 2
    out_of_range = year < 2000 or year > max_year
    if not (far_off or (out_of_range and year != inferred)):
        return result
    try:
        corrected = result.value.replace(year=inferred)
    except ValueError:
        # 29 February in a non-leap year
        corrected = result.value.replace(year=inferred, day=28)
    note = f"Corrected year from {year} to {inferred} based on reference"
    warning = f"{result.warning}; {note[0].lower()}{note[1:]}" if result.warning else note
    return Normalized(corrected, warning=warning)


# ===========================
# PHONES (Lebanon)
# ===========================
def normalize_phone(value) -> Normalized:
    if is_empty(value):
        return Normalized(None, warning="Phone number missing")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    digits = re.sub(r"\D", "", str(value))

    if len(digits) < 7:
        return Normalized(None, error=f'Phone number too short "{value}"')
    if len(digits) > 20:
        return Normalized(None, error=f'Phone number too long "{value}"')

    if digits.startswith("0") and len(digits) in (8, 9):
        return Normalized("+961" + digits[1:])
    if digits.startswith("961") and 10 <= len(digits) <= 12:
        return Normalized("+" + digits)
    if len(digits) in (7, 8):
        return Normalized("+961" + digits)
    if len(digits) <= 9:
        return Normalized("+" + digits, warning="Phone may not be Lebanon format")
    return Normalized("+" + digits)


# ===========================
# NUMBERS
# ===========================
def _to_decimal(value) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    text = str(value).strip().replace(",", "").replace("$", "").replace(" ", "")
    text = re.sub(r"(?i)(usd|lbp|m2|m²|sqm)$", "", text)
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def normalize_price(value) -> Normalized:
    if is_empty(value):
        return Normalized(None, warning="Price missing")
    amount = _to_decimal(value)
    if amount is None or not amount.is_finite():
        return Normalized(None, error=f'Price must be numeric "{value}"')
    if amount < 0:
        return Normalized(None, error=f'Price cannot be negative "{value}"')
    # quantize() overflows beyond 28 significant digits
    if amount > MAX_PRICE + 1:
        return Normalized(None, error="Price exceeds max (999,999,999.99)")
    amount = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if amount > MAX_PRICE:
        return Normalized(None, error="Price exceeds max (999,999,999.99)")
    return Normalized(amount)


def normalize_surface(value) -> Normalized:
    if is_empty(value):
        return Normalized(None, error="Surface is required")
    amount = _to_decimal(value)
    if amount is None or not amount.is_finite() or amount < 0:
        return Normalized(None, error=f'Invalid surface "{value}"')
    if amount > MAX_SURFACE:
        return Normalized(MAX_SURFACE, warning="Surface exceeds 10,000; capped")
    return Normalized(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def normalize_built_year(value, today: Optional[date] = None) -> Normalized:
    if is_empty(value):
        return Normalized(None)
    number = _to_decimal(value)
    if number is None or not number.is_finite() or number != number.to_integral_value():
        return Normalized(None, warning=f'Invalid built year "{value}"')
    year = int(number)
    max_year = (today or date.today()).year + 1
    if year < 1800 or year > max_year:
        return Normalized(None, warning=f"Built year {year} out of range")
    return Normalized(year)


# ===========================
# FLAGS & ENUMS
# ===========================
def normalize_yes_no(value) -> Normalized:
    if is_empty(value):
        return Normalized(None)
    raw = str(clean_text(value)).lower()
    if raw in YES_VALUES:
        return Normalized(True)
    if raw in NO_VALUES:
        return Normalized(False)
    return Normalized(None, warning=f'Could not parse Yes/No "{value}"')


def normalize_view(value) -> Normalized:
    if is_empty(value):
        return Normalized("no view")
    raw = str(clean_text(value)).lower()
    if raw in YES_VALUES:
        return Normalized("open view")
    if raw in NO_VALUES:
        return Normalized("no view")
    candidate = raw if raw.endswith(" view") else f"{raw} view"
    if candidate in VIEW_TYPES:
        return Normalized(candidate)
    return Normalized("no view", warning=f'Unknown view "{value}"; defaulted to no view')
