"""
Tests for the text-layer PDF extractor. Documents are built directly so no
PDF parsing is involved.
"""

from datetime import date

import pytest

from app.extractors.base import LoadedDocument, ParsingError
from app.extractors.pdf_text_extractor import PdfTextExtractor, is_scanned
from app.oracles.classification import OracleError
from tests.conftest import ScriptedOracle

STATEMENT_TEXT = (
    "Zerodha Broking Ltd\n"
    "Holdings statement as on 31-03-2024\n"
    "Instrument Qty Avg. cost LTP Cur. val\n"
    "INFY 20 1,420.00 1,498.10 29,962.00\n"
    "HDFCBANK 15 1,610.50 1,447.95 21,719.25\n"
)


def text_doc(text: str = STATEMENT_TEXT) -> LoadedDocument:
    return LoadedDocument(file_name="zerodha.pdf", document_text=text, payload=b"%PDF", page_count=1,
                          meta={"scanned": False})


class TestIsScanned:

    def test_short_text_is_scan(self):
        assert is_scanned("  page 1  ")

    def test_long_text_is_not(self):
        assert not is_scanned(STATEMENT_TEXT * 2)


class TestPdfTextExtractor:

    async def test_extracts_with_oracle(self):
        oracle = ScriptedOracle(answers=[{
            "statement_date": "2024-03-31",
            "assets": [
                {"asset_name": "Infosys Ltd", "current_value": 29962.00, "quantity": 20,
                 "ticker_symbol": "INFY", "exchange": "nse"},
                {"asset_name": "HDFC Bank Ltd", "current_value": "21,719.25", "isin": "INE040A01034"},
                {"asset_name": "Total", "current_value": -1},
            ],
        }])
        result = await PdfTextExtractor(oracle=oracle).extract_assets(text_doc())

        assert [a.name for a in result.raw_assets] == ["Infosys Ltd", "HDFC Bank Ltd"]
        assert result.raw_assets[0].exchange == "NSE"
        assert result.raw_assets[1].isin == "INE040A01034"
        assert result.rows_dropped == 1
        assert result.statement_date_hint == date(2024, 3, 31)
        assert result.page_count == 1
        assert oracle.text_calls[0]["operation"] == "extract_pdf_text"

    async def test_requires_oracle(self):
        with pytest.raises(ParsingError) as exc:
            await PdfTextExtractor().extract_assets(text_doc())
        assert exc.value.error_code == "ORACLE_UNAVAILABLE"

    async def test_oracle_failure(self):
        oracle = ScriptedOracle(answers=[OracleError("timed out", error_code="ORACLE_TIMEOUT", retryable=True)])
        with pytest.raises(ParsingError) as exc:
            await PdfTextExtractor(oracle=oracle).extract_assets(text_doc())
        assert exc.value.error_code == "EXTRACTION_ORACLE_FAILED"

    async def test_no_assets(self):
        oracle = ScriptedOracle(answers=[{"statement_date": None, "assets": []}])
        with pytest.raises(ParsingError) as exc:
            await PdfTextExtractor(oracle=oracle).extract_assets(text_doc())
        assert exc.value.error_code == "NO_ASSETS"

    async def test_unreadable_bytes(self):
        with pytest.raises(ParsingError) as exc:
            await PdfTextExtractor().load(b"definitely not a pdf document, just some bytes", "broken.pdf")
        assert exc.value.error_code == "UNREADABLE_FILE"
