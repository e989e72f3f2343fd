"""
Tests for workbook extraction. Workbooks are built in memory with openpyxl.
"""

import io
from datetime import date, datetime
from decimal import Decimal

import pytest
from openpyxl import Workbook

from app.extractors.base import ParsingError
from app.extractors.spreadsheet_extractor import SpreadsheetExtractor


def workbook_bytes(rows: list[list]) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


class TestSpreadsheetExtractor:

    async def test_mutual_fund_statement(self):
        data = workbook_bytes([
            ["Consolidated Account Statement"],
            ["Statement Date", "31-Mar-2024"],
            [],
            ["Scheme", "Units", "Market Value", "Purchase Date"],
            ["Parag Parikh Flexi Cap Fund", 512.345, 38450.75, datetime(2021, 6, 15)],
            ["HDFC Mid Cap Opportunities Fund", 210, 41200, "15/01/2022"],
        ])
        result = await SpreadsheetExtractor().extract(data, "cas.xlsx")

        assert [a.name for a in result.raw_assets] == [
            "Parag Parikh Flexi Cap Fund",
            "HDFC Mid Cap Opportunities Fund",
        ]
        first, second = result.raw_assets
        assert first.current_value == Decimal("38450.75")
        assert first.quantity == Decimal("512.345")
        assert first.purchase_date == date(2021, 6, 15)
        assert second.current_value == Decimal("41200")
        assert second.purchase_date == date(2022, 1, 15)

    async def test_document_text_contains_header_block(self):
        data = workbook_bytes([
            ["Statement Date", "31-Mar-2024"],
            ["Asset", "Value"],
            ["Savings account", 150000],
        ])
        doc = await SpreadsheetExtractor().load(data, "bank.xlsx")
        assert "Statement Date\t31-Mar-2024" in doc.document_text

    async def test_integer_floats_render_without_decimals(self):
        data = workbook_bytes([
            ["Asset", "Value"],
            ["Flat in Pune", 8500000],
        ])
        result = await SpreadsheetExtractor().extract(data, "property.xlsx")
        assert result.raw_assets[0].current_value == Decimal("8500000")

    async def test_not_a_workbook(self):
        with pytest.raises(ParsingError) as exc:
            await SpreadsheetExtractor().extract(b"this is plainly not a spreadsheet file" * 3, "bad.xlsx")
        assert exc.value.error_code == "UNREADABLE_FILE"

    async def test_empty_sheet(self):
        with pytest.raises(ParsingError) as exc:
            await SpreadsheetExtractor().extract(workbook_bytes([]), "empty.xlsx")
        assert exc.value.error_code in ("EMPTY_FILE", "UNREADABLE_FILE")
