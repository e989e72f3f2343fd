"""
Indian amount parser for holdings statements.

Handles the conventions seen in broker, bank and fund statements:
- ₹1,23,456.78 / Rs. 1,23,456 / INR 123456 / $1,234.56
- (1,234.56)        -> negative (parentheses)
- -1,234.56         -> negative (leading minus)
- 12.5 L / 12.5 lakh -> 1,250,000
- 1.2 Cr / 1.2 crore -> 12,000,000
"""

import math
import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel


LAKH = Decimal("100000")
CRORE = Decimal("10000000")

_CURRENCY_TOKENS = re.compile(r"(₹|\$|rs\.?|inr)", re.IGNORECASE)
_SCALE_SUFFIX = re.compile(r"^(.+?)\s*(l|lac|lacs|lakh|lakhs|cr|crore|crores)\.?$", re.IGNORECASE)


class AmountParseResult(BaseModel):
    amount: Optional[Decimal] = None
    raw_text: str
    is_negative: bool = False
    sign_convention: Optional[str] = None  # PARENTHESES, MINUS, NONE
    scale: Optional[str] = None  # LAKH, CRORE


def parse_amount_inr(raw) -> AmountParseResult:
    """
    Parse a monetary amount from a statement cell.
    Accepts strings as well as the ints/floats pandas hands back for numeric cells.
    """
    if raw is None:
        return AmountParseResult(amount=None, raw_text="")

    if isinstance(raw, bool):
        return AmountParseResult(amount=None, raw_text=str(raw))

    if isinstance(raw, (int, float, Decimal)):
        if isinstance(raw, float) and (math.isnan(raw) or math.isinf(raw)):
            return AmountParseResult(amount=None, raw_text=str(raw))
        amount = Decimal(str(raw))
        return AmountParseResult(
            amount=amount,
            raw_text=str(raw),
            is_negative=amount < 0,
            sign_convention="MINUS" if amount < 0 else "NONE",
        )

    s = str(raw).strip()
    if not s or s in ("-", "--", "---"):
        return AmountParseResult(amount=None, raw_text=str(raw))

    is_negative = False
    sign_convention = "NONE"

    # Parentheses: (100.00) -> negative
    if s.startswith("(") and s.endswith(")"):
        s = s[1:-1].strip()
        is_negative = True
        sign_convention = "PARENTHESES"

    s = _CURRENCY_TOKENS.sub("", s).strip()

    # Leading minus, also the unicode minus sign
    if s.startswith("-") or s.startswith(chr(8722)):
        s = s[1:].strip()
        is_negative = True
        sign_convention = "MINUS"

    multiplier = Decimal("1")
    scale = None
    m = _SCALE_SUFFIX.match(s)
    if m:
        s = m.group(1).strip()
        if m.group(2).lower().startswith("c"):
            multiplier, scale = CRORE, "CRORE"
        else:
            multiplier, scale = LAKH, "LAKH"

    # Thousands separators in both western and lakh grouping
    s = s.replace(",", "").replace(" ", "")

    try:
        amount = Decimal(s) * multiplier
    except (InvalidOperation, ValueError):
        return AmountParseResult(amount=None, raw_text=str(raw))

    if not amount.is_finite():
        return AmountParseResult(amount=None, raw_text=str(raw))

    if is_negative:
        amount = amount * Decimal("-1")

    return AmountParseResult(
        amount=amount,
        raw_text=str(raw),
        is_negative=is_negative,
        sign_convention=sign_convention,
        scale=scale,
    )


def parse_positive_amount(raw) -> Optional[Decimal]:
    """The parsed amount when it is strictly positive, else None."""
    result = parse_amount_inr(raw)
    if result.amount is None or result.amount <= 0:
        return None
    return result.amount
