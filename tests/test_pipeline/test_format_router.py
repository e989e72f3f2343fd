"""
Tests for upload routing.
"""

import pytest

from app.extractors.csv_extractor import CsvExtractor
from app.extractors.pdf_text_extractor import PdfTextExtractor
from app.extractors.spreadsheet_extractor import SpreadsheetExtractor
from app.pipeline.format_router import (
    SizeOutOfBoundsError, UnsupportedFormatError, detect_format, extractor_for, route,
)


class TestDetectFormat:

    @pytest.mark.parametrize("file_name,expected", [
        ("holdings.csv", "csv"),
        ("Portfolio.XLSX", "spreadsheet"),
        ("old_export.xls", "spreadsheet"),
        ("CAS_March.pdf", "pdf"),
    ])
    def test_by_extension(self, file_name, expected):
        file_format, detected_by = detect_format(file_name)
        assert file_format == expected
        assert detected_by == "extension"

    def test_mime_fallback(self):
        file_format, detected_by = detect_format("statement", "application/pdf")
        assert file_format == "pdf"
        assert detected_by == "mime"

    def test_mime_with_parameters(self):
        file_format, _ = detect_format("export", "text/csv; charset=utf-8")
        assert file_format == "csv"

    def test_unknown(self):
        assert detect_format("notes.docx", "application/msword") is None


class TestRoute:

    def test_routes_csv(self):
        decision = route("holdings.csv", 2048, "text/csv")
        assert decision.file_format == "csv"
        assert decision.extension == ".csv"
        assert decision.size_bytes == 2048

    def test_unsupported_format(self):
        with pytest.raises(UnsupportedFormatError) as exc:
            route("photo.png", 2048, "image/png")
        assert exc.value.error_code == "UNSUPPORTED_FORMAT"
        assert "image/png" in exc.value.message
        assert exc.value.file_name == "photo.png"

    def test_too_small(self):
        with pytest.raises(SizeOutOfBoundsError) as exc:
            route("holdings.csv", 10)
        assert exc.value.error_code == "SIZE_OUT_OF_BOUNDS"

    def test_minimum_size_accepted(self):
        assert route("holdings.csv", 50).file_format == "csv"

    def test_too_large(self):
        with pytest.raises(SizeOutOfBoundsError) as exc:
            route("big.pdf", 51 * 1024 * 1024)
        assert "50MB" in exc.value.message

    def test_format_checked_before_size(self):
        with pytest.raises(UnsupportedFormatError):
            route("photo.png", 1)


class TestExtractorFor:

    @pytest.mark.parametrize("file_name,cls", [
        ("a.csv", CsvExtractor),
        ("a.xlsx", SpreadsheetExtractor),
        ("a.pdf", PdfTextExtractor),
    ])
    def test_extractor_per_format(self, file_name, cls):
        assert isinstance(extractor_for(route(file_name, 1000)), cls)
