"""
Shared extraction logic for CSV and spreadsheet grids.

A grid is the sheet read without a header: a list of rows of raw cell values.
Extraction runs three strategies in order and stops at the first one that
yields assets:

1. Header-driven: locate the header row, map columns by fuzzy alias
2. Headerless: first column is the name, second is the value
3. Oracle fallback: a text dump of the first rows goes to the extraction prompt
"""

import math
from typing import Optional

import structlog

from app.config import settings
from app.extractors.ai_records import statement_date_from_payload, validate_records
from app.extractors.base import AssetExtractor, LoadedDocument, ParsingError
from app.observability.metrics import (
    assets_extracted_total, extraction_fallbacks_total, rows_dropped_total,
)
from app.oracles.classification import OracleError
from app.oracles.prompts import TabularExtractionPrompt
from app.pipeline.amount_parser import parse_positive_amount
from app.pipeline.date_parser import normalize_cell_date
from app.schemas.assets import RawAsset
from app.schemas.contracts import ExtractionResult

logger = structlog.get_logger(__name__)

Grid = list[list]

# First alias that matches a header wins, in field order
COLUMN_ALIASES: dict[str, list[str]] = {
    "name": ["asset", "name", "asset name", "security", "instrument", "holding", "description",
             "scheme", "scrip name", "company"],
    "current_value": ["value", "current value", "market value", "amount", "total", "current amount",
                      "valuation", "balance"],
    "quantity": ["quantity", "qty", "units", "shares", "holdings"],
    "purchase_price": ["purchase price", "cost", "buy price", "average price", "avg price"],
    "purchase_date": ["purchase date", "buy date", "date", "acquisition date"],
    "isin": ["isin", "isin code", "isin no", "isin number", "security code", "security id"],
    "ticker_symbol": ["ticker", "symbol", "stock code", "scrip code", "nse code", "bse code",
                      "scrip", "nse", "bse"],
    "exchange": ["exchange", "market", "stock exchange", "exch"],
}

HEADER_KEYWORDS = ("name", "asset", "value", "amount", "holding", "security")

# Headers shorter than this only match an alias exactly or by containing it
MIN_REVERSE_MATCH_LEN = 4


def cell_text(value) -> str:
    """Display text of a cell; empty for None/NaN."""
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def non_empty_cells(row: list) -> list[str]:
    return [t for t in (cell_text(c) for c in row) if t]


def find_header_row(grid: Grid, search_rows: Optional[int] = None) -> Optional[int]:
    """
    Index of the first row that looks like a header: at least two non-empty
    cells and one of the header keywords. None when no such row is found.
    """
    search_rows = search_rows or settings.HEADER_SEARCH_ROWS
    for i, row in enumerate(grid[:search_rows]):
        cells = non_empty_cells(row)
        if len(cells) < 2:
            continue
        row_text = " ".join(cells).lower()
        if any(k in row_text for k in HEADER_KEYWORDS):
            return i
    return None


def _header_matches(header: str, alias: str) -> bool:
    if alias in header:
        return True
    return len(header) >= MIN_REVERSE_MATCH_LEN and header in alias


def map_columns(headers: list[str]) -> dict[str, int]:
    """
    Map logical fields to column indices.
    A column is claimed by at most one field; earlier fields claim first.
    """
    normalized = [h.lower().strip() for h in headers]
    claimed: set[int] = set()
    mapping: dict[str, int] = {}

    for field, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            index = next(
                (i for i, h in enumerate(normalized)
                 if h and i not in claimed and _header_matches(h, alias)),
                None,
            )
            if index is not None:
                mapping[field] = index
                claimed.add(index)
                break

    return mapping


def _cell(row: list, index: Optional[int]):
    if index is None or index >= len(row):
        return None
    return row[index]


def row_to_asset(row: list, columns: dict[str, int], file_name: str) -> tuple[Optional[RawAsset], str]:
    """A RawAsset and an empty reason, or None and why the row was dropped."""
    name = cell_text(_cell(row, columns["name"]))
    if not name:
        return None, "missing asset name"

    raw_value = _cell(row, columns["current_value"])
    value = parse_positive_amount(raw_value)
    if value is None:
        text = cell_text(raw_value)
        return None, "could not parse value" if not text else "value is zero, negative or not a number"

    fields: dict = {"name": name, "current_value": value, "source_file": file_name}

    quantity = parse_positive_amount(_cell(row, columns.get("quantity")))
    if quantity is not None:
        fields["quantity"] = quantity

    purchase_price = parse_positive_amount(_cell(row, columns.get("purchase_price")))
    if purchase_price is not None:
        fields["purchase_price"] = purchase_price

    purchase_date = normalize_cell_date(_cell(row, columns.get("purchase_date")))
    if purchase_date is not None:
        fields["purchase_date"] = purchase_date

    isin = cell_text(_cell(row, columns.get("isin")))
    if isin:
        fields["isin"] = isin.upper()

    ticker = cell_text(_cell(row, columns.get("ticker_symbol")))
    if ticker:
        fields["ticker_symbol"] = ticker

    exchange = cell_text(_cell(row, columns.get("exchange")))
    if exchange:
        fields["exchange"] = exchange.upper()

    return RawAsset(**fields), ""


def parse_with_header(grid: Grid, header_index: int, file_name: str) -> Optional[tuple[list[RawAsset], int]]:
    """Header-driven parse. None when name or value columns cannot be mapped."""
    headers = [cell_text(c) for c in grid[header_index]]
    columns = map_columns(headers)
    if "name" not in columns or "current_value" not in columns:
        logger.info("tabular_required_columns_missing", file_name=file_name,
                    headers=[h for h in headers if h])
        return None

    assets: list[RawAsset] = []
    dropped = 0
    for offset, row in enumerate(grid[header_index + 1:]):
        if not non_empty_cells(row):
            continue
        asset, reason = row_to_asset(row, columns, file_name)
        if asset is None:
            dropped += 1
            logger.debug("tabular_row_dropped", file_name=file_name,
                         row=header_index + offset + 2, reason=reason)
            continue
        assets.append(asset)

    return assets, dropped


def parse_headerless(grid: Grid, file_name: str) -> tuple[list[RawAsset], int]:
    """Rows with at least two non-empty cells; column 0 is the name, column 1 the value."""
    assets: list[RawAsset] = []
    dropped = 0
    columns = {"name": 0, "current_value": 1}

    for row in grid:
        if len(non_empty_cells(row)) < 2:
            continue
        asset, _ = row_to_asset(row, columns, file_name)
        if asset is None:
            dropped += 1
            continue
        assets.append(asset)

    return assets, dropped


def serialize_rows(grid: Grid, max_rows: Optional[int] = None) -> str:
    """`Row i: a | b | c` lines for the first rows of a grid, blank rows skipped."""
    max_rows = max_rows or settings.AI_FALLBACK_MAX_ROWS
    lines = []
    for i, row in enumerate(grid[:max_rows]):
        cells = non_empty_cells(row)
        if cells:
            lines.append(f"Row {i + 1}: {' | '.join(cells)}")
    return "\n".join(lines)


class TabularExtractor(AssetExtractor):
    """Base for CSV and spreadsheet extractors. Subclasses produce the grid."""

    extractor_name = "tabular"
    prompt = TabularExtractionPrompt()

    async def extract_assets(self, doc: LoadedDocument) -> ExtractionResult:
        grid: Grid = doc.payload or []
        file_name = doc.file_name

        if not grid:
            raise ParsingError("File has no data rows", file_name, error_code="EMPTY_FILE")

        fallback_used = None
        assets: list[RawAsset] = []
        dropped = 0

        header_index = find_header_row(grid)
        parsed = parse_with_header(grid, header_index, file_name) if header_index is not None else None

        if parsed is not None:
            assets, dropped = parsed
        else:
            assets, dropped = parse_headerless(grid, file_name)
            fallback_used = "headerless"
            extraction_fallbacks_total.labels(fallback="headerless").inc()
            logger.info("tabular_headerless_parse", file_name=file_name, assets=len(assets))

        statement_date_hint = None
        if not assets:
            assets, ai_dropped, statement_date_hint = await self._extract_with_oracle(grid, file_name)
            dropped += ai_dropped
            fallback_used = "ai_tabular"

        if not assets:
            raise ParsingError(
                f"No valid assets found. Skipped {dropped} rows. "
                "Check that rows have asset names and values greater than zero.",
                file_name,
                error_code="NO_ASSETS",
            )

        assets_extracted_total.labels(extractor=self.extractor_name).inc(len(assets))
        if dropped:
            rows_dropped_total.labels(extractor=self.extractor_name).inc(dropped)

        logger.info(
            "tabular_extracted",
            file_name=file_name,
            extractor=self.extractor_name,
            assets=len(assets),
            rows_dropped=dropped,
            with_isin=sum(1 for a in assets if a.isin),
            with_ticker=sum(1 for a in assets if a.ticker_symbol),
            fallback=fallback_used,
        )

        return ExtractionResult(
            raw_assets=assets,
            document_text=doc.document_text,
            statement_date_hint=statement_date_hint,
            rows_dropped=dropped,
            fallback_used=fallback_used,
        )

    async def _extract_with_oracle(self, grid: Grid, file_name: str):
        rows_text = serialize_rows(grid)
        if len(rows_text.strip()) < settings.AI_FALLBACK_MIN_CHARS:
            raise ParsingError("File appears to be empty or unreadable", file_name, error_code="EMPTY_FILE")

        if not self.oracle.is_enabled:
            raise ParsingError(
                "File has no clear structure. Use a header row with columns like "
                "'Asset Name' and 'Value', or put names in the first column and values in the second.",
                file_name,
                error_code="NO_STRUCTURE",
            )

        extraction_fallbacks_total.labels(fallback="ai_tabular").inc()
        logger.info("tabular_oracle_fallback", file_name=file_name, chars=len(rows_text))

        try:
            payload = await self.oracle.classify_text(
                self.prompt.system_prompt,
                self.prompt.format_user_message(rows_text[:settings.AI_FALLBACK_MAX_CHARS]),
                operation="extract_tabular",
                model=settings.ORACLE_TEXT_MODEL,
                temperature=0.2,
                tracker=self.tracker,
            )
        except OracleError as e:
            raise ParsingError(f"Structured extraction failed: {e.message}", file_name,
                               error_code="EXTRACTION_ORACLE_FAILED") from e

        assets, dropped = validate_records(payload, file_name)
        return assets, dropped, statement_date_from_payload(payload)
