"""
Validation of asset records returned by an extraction oracle.

Oracle output is untrusted. Each item is checked on its own: a bad item is
dropped, the rest survive. A payload with no recognisable list yields nothing.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from app.pipeline.amount_parser import parse_positive_amount
from app.schemas.assets import RawAsset

logger = structlog.get_logger(__name__)

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ISIN_MIN_LEN = 10
ISIN_MAX_LEN = 12


def records_from_payload(payload: Any) -> list:
    """Find the record list in a bare list, {"assets": [...]} or {"data": [...]}."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("assets", "data"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


def _iso_date(raw) -> Optional[date]:
    """YYYY-MM-DD strings only; calendar-invalid dates such as 2024-02-30 are None."""
    if not isinstance(raw, str) or not ISO_DATE.match(raw.strip()):
        return None
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        return None


def statement_date_from_payload(payload: Any) -> Optional[date]:
    """Optional top-level statement_date an extraction prompt may report."""
    if not isinstance(payload, dict):
        return None
    return _iso_date(payload.get("statement_date"))


def _positive(value) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    return parse_positive_amount(value)


def _text(value) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def validate_record(item: Any, file_name: str) -> Optional[RawAsset]:
    """One RawAsset, or None when the item fails validation."""
    if not isinstance(item, dict):
        return None

    name = _text(item.get("asset_name") or item.get("name"))
    value = _positive(item.get("current_value"))
    if not name or value is None:
        return None

    fields: dict = {"name": name, "current_value": value, "source_file": file_name}

    quantity = _positive(item.get("quantity"))
    if quantity is not None:
        fields["quantity"] = quantity

    purchase_price = _positive(item.get("purchase_price"))
    if purchase_price is not None:
        fields["purchase_price"] = purchase_price

    purchase_date = _iso_date(item.get("purchase_date"))
    if purchase_date is not None:
        fields["purchase_date"] = purchase_date

    isin = _text(item.get("isin"))
    if isin and ISIN_MIN_LEN <= len(isin) <= ISIN_MAX_LEN:
        fields["isin"] = isin.upper()

    ticker = _text(item.get("ticker_symbol"))
    if ticker:
        fields["ticker_symbol"] = ticker

    exchange = _text(item.get("exchange"))
    if exchange:
        fields["exchange"] = exchange.upper()

    try:
        return RawAsset(**fields)
    except ValidationError:
        return None


def validate_records(payload: Any, file_name: str) -> tuple[list[RawAsset], int]:
    """Validated assets and the number of items dropped."""
    items = records_from_payload(payload)
    assets: list[RawAsset] = []
    dropped = 0

    for item in items:
        asset = validate_record(item, file_name)
        if asset is None:
            dropped += 1
            continue
        assets.append(asset)

    if dropped:
        logger.warning("oracle_records_dropped", file_name=file_name, dropped=dropped, kept=len(assets))

    return assets, dropped
