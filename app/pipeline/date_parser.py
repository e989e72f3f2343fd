"""
Day-first date parser for Indian statements.

Strategy:
1. Try unambiguous formats first (named month, ISO)
2. For numeric formats: assume dd/mm (Indian default)
3. Spreadsheet cells may hold Excel serials or already-typed datetimes
"""

import re
from datetime import date, datetime, timedelta
from typing import Optional

from dateutil import parser as dateutil_parser
from pydantic import BaseModel


class DateParseResult(BaseModel):
    parsed_date: Optional[date] = None
    raw_text: str
    format_detected: str
    confidence: float
    is_ambiguous: bool
    ambiguity_note: Optional[str] = None


_MONTHS = "January|February|March|April|May|June|July|August|September|October|November|December"
_MON = "Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec"

# Ordered by specificity (try most specific first)
DATE_FORMATS = [
    # Unambiguous: named month
    (rf'(\d{{1,2}})(?:st|nd|rd|th)?[\s\-]+({_MONTHS})[\s\-,]+(\d{{4}})', 'DD_MONTH_YYYY', False),
    (rf'(\d{{1,2}})(?:st|nd|rd|th)?[\s\-]+({_MON})\w*[\s\-,]+(\d{{4}})', 'DD_MON_YYYY', False),
    (rf'({_MONTHS})\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})', 'MONTH_DD_YYYY', False),
    (rf'({_MON})\w*\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?,?\s+(\d{{4}})', 'MON_DD_YYYY', False),
    (rf'(\d{{1,2}})[\s\-]+({_MON})\w*[\s\-]+(\d{{2}})\b', 'DD_MON_YY', False),

    # ISO format
    (r'(\d{4})-(\d{1,2})-(\d{1,2})', 'YYYY-MM-DD', False),
    (r'(\d{4})/(\d{1,2})/(\d{1,2})', 'YYYY/MM/DD', False),

    # Indian numeric (potentially ambiguous)
    (r'(\d{1,2})/(\d{1,2})/(\d{4})', 'DD/MM/YYYY', True),
    (r'(\d{1,2})-(\d{1,2})-(\d{4})', 'DD-MM-YYYY', True),
    (r'(\d{1,2})\.(\d{1,2})\.(\d{4})', 'DD.MM.YYYY', True),
    (r'(\d{1,2})/(\d{1,2})/(\d{2})\b', 'DD/MM/YY', True),
]

# Excel's day zero; serial 60 is the phantom 1900-02-29
EXCEL_EPOCH = date(1899, 12, 30)
EXCEL_SERIAL_MIN = 1
EXCEL_SERIAL_MAX = 2958465  # 9999-12-31


def parse_date_dayfirst(raw: str) -> DateParseResult:
    """
    Parse a date string with day-first priority (dd/mm).
    Numeric dates whose day and month could swap are flagged ambiguous.
    """
    raw_clean = raw.strip()

    for pattern, format_name, potentially_ambiguous in DATE_FORMATS:
        m = re.match(pattern, raw_clean, re.IGNORECASE)
        if not m:
            continue

        try:
            parsed = _parse_by_format(m, format_name)
        except (ValueError, OverflowError):
            continue

        if parsed is None:
            continue

        is_ambiguous = False
        ambiguity_note = None
        if potentially_ambiguous:
            day_val, month_val = int(m.group(1)), int(m.group(2))
            if day_val <= 12 and month_val <= 12 and day_val != month_val:
                is_ambiguous = True
                ambiguity_note = f"dd/mm vs mm/dd ambiguous ({m.group(1)}/{m.group(2)})"

        confidence = 0.95 if not is_ambiguous else 0.70
        if parsed.year > date.today().year + 1:
            confidence = 0.3  # Future date is suspicious
        if parsed.year < 1950:
            confidence = 0.5

        return DateParseResult(
            parsed_date=parsed,
            raw_text=raw,
            format_detected=format_name,
            confidence=confidence,
            is_ambiguous=is_ambiguous,
            ambiguity_note=ambiguity_note,
        )

    return DateParseResult(
        parsed_date=None,
        raw_text=raw,
        format_detected="UNKNOWN",
        confidence=0.0,
        is_ambiguous=False,
    )


def _parse_by_format(match, format_name: str) -> Optional[date]:
    """Parse date from regex match based on detected format."""

    if format_name in ('YYYY-MM-DD', 'YYYY/MM/DD'):
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    if format_name in ('DD/MM/YYYY', 'DD-MM-YYYY', 'DD.MM.YYYY'):
        return date(int(match.group(3)), int(match.group(2)), int(match.group(1)))

    if format_name == 'DD/MM/YY':
        yy = int(match.group(3))
        year = 1900 + yy if yy > 50 else 2000 + yy
        return date(year, int(match.group(2)), int(match.group(1)))

    if 'MON' in format_name:
        return dateutil_parser.parse(match.group(0), dayfirst=True, fuzzy=True).date()

    return None


def excel_serial_to_date(serial: float) -> Optional[date]:
    """Convert an Excel 1900-system serial to a date. Fractions (times) are dropped."""
    if serial < EXCEL_SERIAL_MIN or serial > EXCEL_SERIAL_MAX:
        return None
    return EXCEL_EPOCH + timedelta(days=int(serial))


def normalize_cell_date(value) -> Optional[date]:
    """
    Normalise a spreadsheet or CSV cell to a date.
    Handles datetime/Timestamp cells, Excel serials and day-first text.
    """
    if value is None:
        return None

    # pandas.Timestamp subclasses datetime
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value != value:  # NaN
            return None
        return excel_serial_to_date(value)

    text = str(value).strip()
    if not text:
        return None

    # Numeric text straight from a CSV export of a spreadsheet
    if re.fullmatch(r'\d{5}(\.\d+)?', text):
        return excel_serial_to_date(float(text))

    result = parse_date_dayfirst(text)
    return result.parsed_date
