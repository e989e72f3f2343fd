"""
CSV extractor.
Reads the file without assuming a header so the header row can be searched for.
"""

import io

import pandas as pd
import structlog

from app.extractors.base import LoadedDocument, ParsingError
from app.extractors.tabular import TabularExtractor, non_empty_cells

logger = structlog.get_logger(__name__)


def decode_csv(data: bytes) -> str:
    """UTF-8 (BOM tolerated) first, then latin-1, which never fails."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def read_csv_grid(text: str) -> list[list[str]]:
    # Ragged rows are padded to the widest line so no cell is dropped
    width = max((line.count(",") for line in text.splitlines()), default=0) + 1
    frame = pd.read_csv(
        io.StringIO(text),
        header=None,
        names=range(width),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        on_bad_lines="skip",
        engine="python",
    )
    return frame.values.tolist()


class CsvExtractor(TabularExtractor):
    extractor_name = "csv"

    async def load(self, data: bytes, file_name: str) -> LoadedDocument:
        text = decode_csv(data)
        if not text.strip():
            raise ParsingError("CSV file is empty", file_name, error_code="EMPTY_FILE")

        try:
            grid = read_csv_grid(text)
        except pd.errors.EmptyDataError as e:
            raise ParsingError("CSV file is empty", file_name, error_code="EMPTY_FILE") from e
        except pd.errors.ParserError as e:
            raise ParsingError(f"CSV parsing failed: {e}", file_name) from e

        grid = [row for row in grid if non_empty_cells(row)]
        logger.debug("csv_loaded", file_name=file_name, rows=len(grid))

        return LoadedDocument(file_name=file_name, document_text=text, payload=grid)
