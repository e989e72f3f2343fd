"""
Spreadsheet extractor for .xlsx (openpyxl) and .xls (xlrd) workbooks.
Only the first sheet is read.
"""

import io
import zipfile

import pandas as pd
import structlog
import xlrd
from openpyxl.utils.exceptions import InvalidFileException

from app.extractors.base import LoadedDocument, ParsingError
from app.extractors.tabular import TabularExtractor, cell_text, non_empty_cells

logger = structlog.get_logger(__name__)


def read_excel_grid(data: bytes) -> list[list]:
    frame = pd.read_excel(io.BytesIO(data), sheet_name=0, header=None, dtype=object)
    frame = frame.astype(object).where(frame.notna(), "")
    return frame.values.tolist()


def grid_to_text(grid: list[list]) -> str:
    """Tab-joined rows; feeds the statement date resolver."""
    return "\n".join("\t".join(cell_text(c) for c in row) for row in grid)


class SpreadsheetExtractor(TabularExtractor):
    extractor_name = "spreadsheet"

    async def load(self, data: bytes, file_name: str) -> LoadedDocument:
        try:
            grid = read_excel_grid(data)
        except (ValueError, KeyError, OSError, zipfile.BadZipFile,
                InvalidFileException, xlrd.XLRDError) as e:
            raise ParsingError(f"Failed to read workbook: {e}", file_name, error_code="UNREADABLE_FILE") from e

        grid = [row for row in grid if non_empty_cells(row)]
        if not grid:
            raise ParsingError("Excel file is empty", file_name, error_code="EMPTY_FILE")

        logger.debug("spreadsheet_loaded", file_name=file_name, rows=len(grid))
        return LoadedDocument(file_name=file_name, document_text=grid_to_text(grid), payload=grid)
