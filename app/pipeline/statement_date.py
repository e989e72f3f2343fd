"""
Statement date resolver.

Infers the as-of date of a statement, with a confidence grade and where it came
from. Tiers in precedence order:

1. Document content: keyword-anchored search, then the date prompt
2. File name patterns
3. Upload timestamp (always succeeds, low confidence)

A content or file-name answer is taken only when it has a date and its
confidence is not low. resolve() never raises.
"""

import calendar
import re
from datetime import date, datetime
from pathlib import PurePath
from typing import Optional

import structlog

from app.config import settings
from app.models.enums import DateConfidence, DateSource
from app.observability.cost_tracker import OracleUsageTracker
from app.oracles.classification import ClassificationOracle, DisabledClassificationOracle, OracleError
from app.oracles.prompts import StatementDatePrompt
from app.pipeline.date_parser import parse_date_dayfirst
from app.schemas.contracts import StatementDateResult

logger = structlog.get_logger(__name__)

# ─── Content Patterns ─────────────────────────────────────────

_DATE_TEXT = r"(.{6,32})"

PERIOD_PATTERN = re.compile(
    r"statement\s+period\s*[:\-]?\s*.{6,32}?\s+(?:to|till|until|-)\s+" + _DATE_TEXT,
    re.IGNORECASE,
)

ANCHOR_PATTERNS = [
    re.compile(r"(?:statement|valuation|report)\s+date\s*[:\-]?\s*" + _DATE_TEXT, re.IGNORECASE),
    re.compile(r"\bas\s+(?:of|on|at)\s*[:\-]?\s*" + _DATE_TEXT, re.IGNORECASE),
]

# ─── File Name Patterns ───────────────────────────────────────

FILENAME_DMY = re.compile(r"(\d{1,2})[-/](\d{1,2})[-/](\d{4})")
FILENAME_YMD = re.compile(r"(\d{4})[-/](\d{1,2})[-/](\d{1,2})")
# "_" is a word character, so \b cannot anchor names like HDFC_Nov2024
FILENAME_MONTH_YEAR = re.compile(
    r"(?<![a-z])(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)[^a-z0-9]*(\d{4})(?!\d)"
)
FILENAME_YEAR = re.compile(r"(?<!\d)(20\d{2})(?!\d)")

MONTH_NUMBERS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CONFIDENCES = {c.value for c in DateConfidence}


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def end_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def search_content_date(text: str) -> StatementDateResult:
    """Keyword-anchored search over document text. Statement period uses its end date."""
    candidates = [PERIOD_PATTERN] + ANCHOR_PATTERNS
    for pattern in candidates:
        for m in pattern.finditer(text):
            fragment = m.group(1).strip()
            parsed = parse_date_dayfirst(fragment)
            if parsed.parsed_date is None:
                continue
            if parsed.confidence >= 0.9:
                confidence = DateConfidence.HIGH
            elif parsed.confidence >= 0.7:
                confidence = DateConfidence.MEDIUM
            else:
                confidence = DateConfidence.LOW
            return StatementDateResult(
                date=parsed.parsed_date,
                confidence=confidence,
                source=DateSource.DOCUMENT_CONTENT,
                original_text=m.group(0).strip(),
            )

    return StatementDateResult(date=None, confidence=DateConfidence.LOW, source=DateSource.DOCUMENT_CONTENT)


def parse_date_answer(answer) -> StatementDateResult:
    """Validate the date prompt's JSON answer. Anything malformed is a dateless low result."""
    empty = StatementDateResult(date=None, confidence=DateConfidence.LOW, source=DateSource.DOCUMENT_CONTENT)
    if not isinstance(answer, dict):
        return empty

    raw = answer.get("date")
    if not isinstance(raw, str) or not ISO_DATE.match(raw.strip()):
        return empty
    try:
        parsed = date.fromisoformat(raw.strip())
    except ValueError:
        return empty

    confidence = answer.get("confidence")
    if confidence not in _CONFIDENCES or confidence == DateConfidence.MANUAL.value:
        confidence = DateConfidence.MEDIUM.value

    original = answer.get("original_text")
    return StatementDateResult(
        date=parsed,
        confidence=confidence,
        source=DateSource.DOCUMENT_CONTENT,
        original_text=original if isinstance(original, str) else None,
    )


def date_from_filename(file_name: str) -> StatementDateResult:
    """
    File name patterns in priority order:
    DD-MM-YYYY (high), YYYY-MM-DD (high), month name + year (end of month,
    medium), bare 20xx (Dec 31, low).
    """
    stem = PurePath(file_name).name
    stem = re.sub(r"\.(pdf|csv|xlsx|xls)$", "", stem, flags=re.IGNORECASE)
    lowered = stem.lower()

    def result(found: date, confidence: DateConfidence, text: str) -> StatementDateResult:
        return StatementDateResult(date=found, confidence=confidence, source=DateSource.FILENAME,
                                   original_text=text)

    for m in FILENAME_DMY.finditer(stem):
        found = _safe_date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        if found:
            return result(found, DateConfidence.HIGH, m.group(0))

    for m in FILENAME_YMD.finditer(stem):
        found = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if found:
            return result(found, DateConfidence.HIGH, m.group(0))

    m = FILENAME_MONTH_YEAR.search(lowered)
    if m:
        month = MONTH_NUMBERS[m.group(1)[:3]]
        return result(end_of_month(int(m.group(2)), month), DateConfidence.MEDIUM, stem[m.start():m.end()])

    m = FILENAME_YEAR.search(stem)
    if m:
        return result(date(int(m.group(1)), 12, 31), DateConfidence.LOW, m.group(1))

    return StatementDateResult(date=None, confidence=DateConfidence.LOW, source=DateSource.FILENAME)


def date_from_upload(uploaded_at: Optional[datetime] = None) -> StatementDateResult:
    uploaded_at = uploaded_at or datetime.now()
    return StatementDateResult(
        date=uploaded_at.date(),
        confidence=DateConfidence.LOW,
        source=DateSource.UPLOAD_TIMESTAMP,
    )


class StatementDateResolver:
    """Resolves one statement date per file. Holds the oracle and the batch's usage tracker."""

    prompt = StatementDatePrompt()

    def __init__(
        self,
        oracle: Optional[ClassificationOracle] = None,
        tracker: Optional[OracleUsageTracker] = None,
    ):
        self.oracle = oracle or DisabledClassificationOracle()
        self.tracker = tracker

    async def from_content(self, document_text: Optional[str]) -> StatementDateResult:
        """Keyword search first, then the date prompt. Never raises."""
        if not document_text or not document_text.strip():
            return StatementDateResult(date=None, confidence=DateConfidence.LOW,
                                       source=DateSource.DOCUMENT_CONTENT)

        excerpt_chars = settings.STATEMENT_DATE_EXCERPT_CHARS
        found = search_content_date(document_text[:excerpt_chars * 2])
        if found.is_acceptable or not self.oracle.is_enabled:
            return found

        try:
            answer = await self.oracle.classify_text(
                self.prompt.system_prompt,
                self.prompt.format_user_message(document_text, excerpt_chars),
                operation="statement_date",
                temperature=0.1,
                tracker=self.tracker,
            )
        except OracleError as e:
            logger.warning("statement_date_oracle_failed", error=e.message, error_code=e.error_code)
            return found

        return parse_date_answer(answer)

    def settle(
        self,
        content: Optional[StatementDateResult],
        file_name: str,
        uploaded_at: Optional[datetime] = None,
        hint: Optional[date] = None,
    ) -> StatementDateResult:
        """
        Pick the winning tier: content, then a date the extraction oracle
        reported, then the file name, then the upload timestamp.
        """
        if content is not None and content.is_acceptable:
            return content

        if hint is not None:
            return StatementDateResult(date=hint, confidence=DateConfidence.MEDIUM,
                                       source=DateSource.DOCUMENT_CONTENT)

        from_name = date_from_filename(file_name)
        if from_name.is_acceptable:
            return from_name

        return date_from_upload(uploaded_at)

    async def resolve(
        self,
        document_text: Optional[str],
        file_name: str,
        uploaded_at: Optional[datetime] = None,
    ) -> StatementDateResult:
        content = await self.from_content(document_text)
        result = self.settle(content, file_name, uploaded_at)
        logger.info(
            "statement_date_resolved",
            file_name=file_name,
            date=result.date.isoformat() if result.date else None,
            confidence=result.confidence,
            source=result.source,
        )
        return result
