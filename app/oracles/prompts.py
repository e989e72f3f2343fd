"""
Prompt templates for the classification oracle.

Every prompt asks for a JSON object; callers still validate the answer.
"""

import json
from dataclasses import dataclass
from typing import Optional

from app.pipeline.taxonomy import SubclassMapping

PROMPT_VERSION = "v1.0"

_ASSET_FIELDS = """- asset_name: The full name of the asset/security/instrument
- current_value: The current market value or amount (in rupees, as a number)
- quantity: Number of units/shares if available
- purchase_price: Purchase/cost price if available
- purchase_date: Purchase date if available (YYYY-MM-DD format)
- isin: ISIN code if available (12-character alphanumeric, e.g., INE002A01018)
- ticker_symbol: Stock ticker/scrip code if available (e.g., RELIANCE, INFY)
- exchange: Stock exchange if available (NSE, BSE, NASDAQ, etc.)"""

_ASSET_RULES = """1. Extract ONLY assets (stocks, mutual funds, bonds, property, etc.) - NOT transactions, headers, or summaries
2. Current value must be a positive number (convert lakhs/crores to absolute rupees)
   - 1 L = 100,000
   - 1 Cr = 10,000,000
3. Skip headers, totals, and non-asset rows
4. If a single asset appears multiple times, consolidate to one entry with latest value
5. For mutual funds, use the full scheme name as asset_name
6. For stocks, use the company name (remove NSE/BSE prefixes if present)
7. If ISIN, ticker, or exchange codes are present, extract them"""

_ASSET_FORMAT = """Return a JSON object:
{
  "statement_date": "YYYY-MM-DD or null",
  "assets": [
    {
      "asset_name": "Reliance Industries Ltd",
      "current_value": 500000,
      "quantity": 1000,
      "purchase_price": 450000,
      "purchase_date": "2024-01-15",
      "isin": "INE002A01018",
      "ticker_symbol": "RELIANCE",
      "exchange": "NSE"
    }
  ]
}

If no assets are found, return {"statement_date": null, "assets": []}"""


@dataclass
class TabularExtractionPrompt:
    """Structured extraction from a serialised spreadsheet/CSV dump."""

    version: str = PROMPT_VERSION
    system_prompt: str = (
        "You are an expert at extracting asset information from Excel spreadsheets "
        "and financial statements.\n\n"
        "Extract all assets from the provided rows. For each asset, provide:\n"
        f"{_ASSET_FIELDS}\n\nImportant rules:\n{_ASSET_RULES}\n"
        "8. Handle unusual table structures - data may not have clear column headers\n\n"
        f"{_ASSET_FORMAT}"
    )

    def format_user_message(self, rows_text: str) -> str:
        return f"Extract assets from this spreadsheet data:\n\n{rows_text}"


@dataclass
class StatementExtractionPrompt:
    """Structured extraction from the text layer of a statement PDF."""

    version: str = PROMPT_VERSION
    system_prompt: str = (
        "You are an expert at extracting asset information from Indian financial statements "
        "(broker statements, bank statements, mutual fund statements, etc.).\n\n"
        "Extract all assets from the provided statement text. For each asset, provide:\n"
        f"{_ASSET_FIELDS}\n\nImportant rules:\n{_ASSET_RULES}\n\n"
        f"{_ASSET_FORMAT}"
    )

    def format_user_message(self, statement_text: str) -> str:
        return f"Extract assets from this financial statement:\n\n{statement_text}"


@dataclass
class VisionExtractionPrompt:
    """Extraction from rasterised pages of a scanned statement."""

    version: str = PROMPT_VERSION
    prompt: str = (
        "These images are consecutive pages of a scanned Indian financial statement. "
        "Read every holdings table on them.\n\n"
        "For each asset, provide:\n"
        f"{_ASSET_FIELDS}\n\nImportant rules:\n{_ASSET_RULES}\n"
        "8. Only report values you can actually read; never guess digits\n\n"
        f"{_ASSET_FORMAT}"
    )


@dataclass
class StatementDatePrompt:
    version: str = PROMPT_VERSION
    system_prompt: str = "You are an expert at extracting dates from Indian financial statements."
    user_template: str = """Extract the statement date from this financial document.

Look for phrases like:
- "As of [date]"
- "Statement Date: [date]"
- "Portfolio Valuation Date: [date]"
- "Statement Period: [date] to [date]" (use the end date)
- Dates in headers or footers

Common Indian date formats:
- 30-Nov-2024
- November 30, 2024
- 30/11/2024
- 2024-11-30

Return ONLY a JSON object with this exact format:
{{
  "date": "YYYY-MM-DD",
  "confidence": "high" | "medium" | "low",
  "original_text": "the exact date string you found"
}}

If no date found, return:
{{
  "date": null,
  "confidence": "low",
  "original_text": null
}}

Document excerpt (first {excerpt_chars} characters):
{excerpt}"""

    def format_user_message(self, document_text: str, excerpt_chars: int) -> str:
        return self.user_template.format(
            excerpt=document_text[:excerpt_chars],
            excerpt_chars=excerpt_chars,
        )


ISIN_PREFIX_HINTS = {
    "INE": "(INE prefix indicates equity security)",
    "INF": "(INF prefix indicates mutual fund)",
    "IN0": "(IN0/IN9 prefix indicates government/corporate bond)",
    "IN9": "(IN0/IN9 prefix indicates government/corporate bond)",
}


@dataclass
class ClassificationPrompt:
    """Closed-taxonomy classification of one asset."""

    version: str = PROMPT_VERSION
    temperature: float = 0.3

    def system_prompt(self, mappings: list[SubclassMapping], has_identifiers: bool) -> str:
        options = [
            {
                "class": m.asset_class,
                "subclass": m.subclass_code,
                "display_name": m.display_name,
                "keywords": list(m.keyword_patterns),
                "risk": m.risk_level,
                "return": float(m.expected_return_midpoint),
            }
            for m in mappings
        ]
        identifier_rule = (
            "\n6. Use the provided ISIN/ticker to improve classification accuracy - "
            "ISIN prefixes are strong indicators of asset type"
            if has_identifiers else ""
        )
        return f"""You are an expert at classifying Indian financial assets.

Given an asset name{' and financial identifiers' if has_identifiers else ''}, classify it into the correct asset_class and asset_subclass based on these options:

{json.dumps(options, indent=2)}

Rules:
1. Match the asset name to the most appropriate subclass based on keywords
2. If the asset name contains multiple matching keywords, choose the most specific subclass
3. Asset class should be one of: equity, debt, cash, real_estate, other
4. asset_subclass MUST be one of the listed subclasses for the chosen asset_class
5. Provide a confidence score between 0 and 1 (1 = very confident, 0.5 = uncertain){identifier_rule}

Return JSON in this exact format:
{{
  "asset_class": "equity",
  "asset_subclass": "direct_stocks",
  "confidence": 0.95,
  "reasoning": "Asset name contains 'Ltd' which indicates a company stock"
}}"""

    def user_message(
        self,
        name: str,
        isin: Optional[str] = None,
        ticker: Optional[str] = None,
        exchange: Optional[str] = None,
    ) -> str:
        context = []
        if isin:
            context.append(f"ISIN: {isin}")
            hint = ISIN_PREFIX_HINTS.get(isin[:3].upper())
            if hint:
                context.append(hint)
        if ticker:
            context.append(f"Ticker: {ticker}")
        if exchange:
            context.append(f"Exchange: {exchange}")

        if not context:
            return f'Classify this asset: "{name}"'
        joined = "\n".join(context)
        return f'Classify this asset:\nName: "{name}"\n{joined}'
