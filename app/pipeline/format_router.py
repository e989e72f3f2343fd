"""
Format router.
Decides which extractor handles an uploaded file from its name, size and MIME type.
"""

from pathlib import PurePath
from typing import Optional

from pydantic import BaseModel, ConfigDict

from app.config import settings
from app.extractors.base import AssetExtractor
from app.extractors.csv_extractor import CsvExtractor
from app.extractors.pdf_text_extractor import PdfTextExtractor
from app.extractors.spreadsheet_extractor import SpreadsheetExtractor
from app.models.enums import FileFormat
from app.observability.cost_tracker import OracleUsageTracker
from app.oracles.classification import ClassificationOracle


EXTENSION_FORMATS = {
    ".csv": FileFormat.CSV,
    ".xlsx": FileFormat.SPREADSHEET,
    ".xls": FileFormat.SPREADSHEET,
    ".pdf": FileFormat.PDF,
}

MIME_FORMATS = {
    "text/csv": FileFormat.CSV,
    "application/csv": FileFormat.CSV,
    "application/vnd.ms-excel": FileFormat.SPREADSHEET,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": FileFormat.SPREADSHEET,
    "application/pdf": FileFormat.PDF,
}


class RoutingError(Exception):
    error_code = "ROUTING_FAILED"

    def __init__(self, message: str, file_name: str):
        super().__init__(message)
        self.message = message
        self.file_name = file_name


class UnsupportedFormatError(RoutingError):
    error_code = "UNSUPPORTED_FORMAT"


class SizeOutOfBoundsError(RoutingError):
    error_code = "SIZE_OUT_OF_BOUNDS"


class RouteDecision(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    file_name: str
    file_format: FileFormat
    size_bytes: int
    extension: str
    detected_by: str  # extension, mime


def detect_format(file_name: str, content_type: Optional[str] = None) -> Optional[tuple[FileFormat, str]]:
    """Extension first, then the declared MIME type. None when neither is known."""
    extension = PurePath(file_name).suffix.lower()
    if extension in EXTENSION_FORMATS:
        return EXTENSION_FORMATS[extension], "extension"

    if content_type:
        mime = content_type.split(";")[0].strip().lower()
        if mime in MIME_FORMATS:
            return MIME_FORMATS[mime], "mime"

    return None


def route(file_name: str, size_bytes: int, content_type: Optional[str] = None) -> RouteDecision:
    """
    Classify an upload.

    Raises:
        UnsupportedFormatError: neither extension nor MIME type is supported
        SizeOutOfBoundsError: below the empty/corrupt floor or above the size cap
    """
    detected = detect_format(file_name, content_type)
    if detected is None:
        raise UnsupportedFormatError(
            f"Unsupported file type. Please upload CSV, Excel (.xlsx, .xls), or PDF files. "
            f"Got: {content_type or 'unknown'}",
            file_name,
        )

    if size_bytes < settings.MIN_UPLOAD_SIZE_BYTES:
        raise SizeOutOfBoundsError(
            f"File is too small ({size_bytes} bytes). It may be empty or corrupt.",
            file_name,
        )

    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if size_bytes > max_bytes:
        raise SizeOutOfBoundsError(
            f"File size exceeds {settings.MAX_UPLOAD_SIZE_MB}MB limit "
            f"({size_bytes / (1024 * 1024):.2f}MB)",
            file_name,
        )

    file_format, detected_by = detected
    return RouteDecision(
        file_name=file_name,
        file_format=file_format,
        size_bytes=size_bytes,
        extension=PurePath(file_name).suffix.lower(),
        detected_by=detected_by,
    )


EXTRACTORS: dict[str, type[AssetExtractor]] = {
    FileFormat.CSV.value: CsvExtractor,
    FileFormat.SPREADSHEET.value: SpreadsheetExtractor,
    FileFormat.PDF.value: PdfTextExtractor,
}


def extractor_for(
    decision: RouteDecision,
    oracle: Optional[ClassificationOracle] = None,
    tracker: Optional[OracleUsageTracker] = None,
) -> AssetExtractor:
    """Extractor instance for a routed file. Scanned PDFs are detected by the PDF extractor itself."""
    return EXTRACTORS[decision.file_format](oracle=oracle, tracker=tracker)
