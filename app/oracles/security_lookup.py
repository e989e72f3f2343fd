"""
Security lookup oracle.

ISIN prefixes classify Indian securities without any network call; tickers are
resolved against the exchange quote API. Lookups never raise: a miss, a
transport error or an unexpected payload all come back as found=False so the
classifier can move on to its next tier.
"""

import re
import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx
import structlog

from app.config import settings
from app.models.enums import AssetClass, SecurityType
from app.observability.metrics import oracle_calls_total, oracle_latency_seconds
from app.schemas.contracts import LookupResult

logger = structlog.get_logger(__name__)

ORACLE_NAME = "security_lookup"

ISIN_PREFIX_CONFIDENCE = 0.85
TICKER_CONFIDENCE = 0.95
# Quote found but carrying neither sector nor index membership
TICKER_BARE_CONFIDENCE = 0.8
MIN_ISIN_LENGTH = 10

ISIN_PREFIX_TYPES = {
    "INE": SecurityType.EQUITY,
    "INF": SecurityType.MUTUAL_FUND,
    "IN0": SecurityType.BOND,
    "IN9": SecurityType.BOND,
}

LARGE_CAP_INDICES = ("NIFTY 50", "NIFTY 100")

# "it" only as a whole word
SECTORAL_SECTORS = re.compile(r"\b(?:pharma|bank|infrastructure|energy|information technology)|\bit\b")


def map_security_type(raw_type: Optional[str]) -> SecurityType:
    """Map a free-text instrument type from a quote payload onto SecurityType."""
    normalized = (raw_type or "").lower()

    if "equity" in normalized or "stock" in normalized:
        return SecurityType.EQUITY
    if "mutual fund" in normalized or "mf" in normalized:
        return SecurityType.MUTUAL_FUND
    if "bond" in normalized or "debt" in normalized:
        return SecurityType.BOND
    if "etf" in normalized or "exchange traded" in normalized:
        return SecurityType.ETF
    if "gold" in normalized or "silver" in normalized or "commodity" in normalized:
        return SecurityType.COMMODITY
    return SecurityType.UNKNOWN


def determine_subclass(
    security_type: SecurityType,
    sector: Optional[str] = None,
    market_cap: Optional[str] = None,
    security_name: Optional[str] = None,
) -> tuple[AssetClass, str]:
    """Asset class and subclass implied by what the lookup knows about a security."""
    name = (security_name or "").lower()
    sector_lower = (sector or "").lower()

    if security_type == SecurityType.EQUITY:
        if "nifty" in name or "sensex" in name or "index" in name:
            return AssetClass.EQUITY, "index_funds"
        if SECTORAL_SECTORS.search(sector_lower):
            return AssetClass.EQUITY, "sectoral_funds"
        if market_cap == "large_cap":
            return AssetClass.EQUITY, "large_cap_funds"
        if market_cap == "mid_cap":
            return AssetClass.EQUITY, "mid_cap_funds"
        if market_cap == "small_cap":
            return AssetClass.EQUITY, "small_cap_funds"
        return AssetClass.EQUITY, "direct_stocks"

    if security_type == SecurityType.MUTUAL_FUND:
        if "elss" in name or "tax saver" in name or "80c" in name:
            return AssetClass.EQUITY, "elss"
        if "index" in name or "nifty" in name or "sensex" in name:
            return AssetClass.EQUITY, "index_funds"
        if any(s in name for s in ("pharma", "technology", "banking", "infrastructure", "sector")):
            return AssetClass.EQUITY, "sectoral_funds"
        if "large cap" in name or "largecap" in name or "bluechip" in name:
            return AssetClass.EQUITY, "large_cap_funds"
        if "mid cap" in name or "midcap" in name:
            return AssetClass.EQUITY, "mid_cap_funds"
        if "small cap" in name or "smallcap" in name:
            return AssetClass.EQUITY, "small_cap_funds"
        if any(s in name for s in ("international", "global", "us equity", "nasdaq")):
            return AssetClass.EQUITY, "international_equity"
        return AssetClass.EQUITY, "large_cap_funds"

    if security_type == SecurityType.ETF:
        if "gold" in name or "silver" in name:
            return AssetClass.OTHER, "gold_etf"
        return AssetClass.EQUITY, "index_funds"

    if security_type == SecurityType.BOND:
        return AssetClass.DEBT, "bonds"

    if security_type == SecurityType.COMMODITY:
        return AssetClass.OTHER, "physical_gold"

    return AssetClass.EQUITY, "direct_stocks"


def market_cap_from_indices(indices: list[str]) -> str:
    upper = [i.upper() for i in indices]
    if any(i in LARGE_CAP_INDICES for i in upper):
        return "large_cap"
    if any(i == "NIFTY 200" or i.startswith("NIFTY MIDCAP") for i in upper):
        return "mid_cap"
    return "small_cap"


def isin_prefix_lookup(isin: str, security_name: Optional[str] = None) -> LookupResult:
    """Classify from the ISIN issuer-type prefix alone. No network."""
    isin = (isin or "").strip().upper()
    if len(isin) < MIN_ISIN_LENGTH:
        return LookupResult.not_found()

    security_type = ISIN_PREFIX_TYPES.get(isin[:3])
    if security_type is None:
        return LookupResult.not_found()

    asset_class, subclass = determine_subclass(security_type, security_name=security_name)
    return LookupResult(
        found=True,
        security_name=security_name,
        security_type=security_type,
        asset_class=asset_class,
        asset_subclass=subclass,
        confidence=ISIN_PREFIX_CONFIDENCE,
    )


class SecurityLookupOracle(ABC):

    @abstractmethod
    async def lookup_by_isin(self, isin: str, security_name: Optional[str] = None) -> LookupResult:
        ...

    @abstractmethod
    async def lookup_by_ticker(self, ticker: str, exchange: Optional[str] = None) -> LookupResult:
        ...

    async def lookup(
        self,
        isin: Optional[str] = None,
        ticker: Optional[str] = None,
        exchange: Optional[str] = None,
        security_name: Optional[str] = None,
    ) -> LookupResult:
        """ISIN first, then ticker. found=False when neither resolves."""
        if isin and len(isin.strip()) >= MIN_ISIN_LENGTH:
            result = await self.lookup_by_isin(isin, security_name)
            if result.found:
                return result

        if ticker and ticker.strip():
            result = await self.lookup_by_ticker(ticker, exchange)
            if result.found:
                return result

        return LookupResult.not_found()


class NseSecurityLookup(SecurityLookupOracle):
    """ISIN prefix rules plus the NSE quote-equity endpoint for tickers."""

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None,
                 enabled: Optional[bool] = None):
        self.base_url = (base_url or settings.LOOKUP_BASE_URL).rstrip("/")
        self.enabled = settings.ENABLE_SECURITY_LOOKUP if enabled is None else enabled
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(float(settings.LOOKUP_TIMEOUT_SECONDS)),
            headers={
                "User-Agent": "Mozilla/5.0 (X11; Linux x86_64)",
                "Accept": "application/json",
            },
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def lookup_by_isin(self, isin: str, security_name: Optional[str] = None) -> LookupResult:
        result = isin_prefix_lookup(isin, security_name)
        oracle_calls_total.labels(
            oracle=ORACLE_NAME, operation="isin", status="hit" if result.found else "miss",
        ).inc()
        return result

    async def lookup_by_ticker(self, ticker: str, exchange: Optional[str] = None) -> LookupResult:
        symbol = ticker.strip().upper()
        exchange = (exchange or "NSE").upper()
        if not self.enabled or not symbol:
            return LookupResult.not_found()

        started = time.time()
        try:
            response = await self._client.get(f"{self.base_url}/quote-equity", params={"symbol": symbol})
            if response.status_code == 404:
                oracle_calls_total.labels(oracle=ORACLE_NAME, operation="ticker", status="miss").inc()
                return LookupResult.not_found()
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            oracle_calls_total.labels(oracle=ORACLE_NAME, operation="ticker", status="error").inc()
            logger.warning("ticker_lookup_failed", ticker=symbol, exchange=exchange, error=str(e))
            return LookupResult.not_found()
        finally:
            oracle_latency_seconds.labels(oracle=ORACLE_NAME, operation="ticker").observe(time.time() - started)

        result = self._parse_quote(payload, symbol, exchange)
        oracle_calls_total.labels(
            oracle=ORACLE_NAME, operation="ticker", status="hit" if result.found else "miss",
        ).inc()
        return result

    @staticmethod
    def _parse_quote(payload, symbol: str, exchange: str) -> LookupResult:
        if not isinstance(payload, dict):
            return LookupResult.not_found()
        info = payload.get("info")
        if not isinstance(info, dict) or not info:
            return LookupResult.not_found()

        metadata = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else {}
        industry_info = payload.get("industryInfo") if isinstance(payload.get("industryInfo"), dict) else {}

        security_name = info.get("companyName") or info.get("symbol") or symbol
        sector = info.get("industry") or metadata.get("industry") or industry_info.get("sector") or ""

        indices = metadata.get("pdSectorIndAll") or []
        if isinstance(indices, str):
            indices = [indices]
        if metadata.get("pdSectorInd"):
            indices = list(indices) + [str(metadata["pdSectorInd"]).strip()]
        indices = [str(i).strip() for i in indices if str(i).strip()]
        market_cap = market_cap_from_indices(indices)

        security_type = SecurityType.EQUITY
        asset_class, subclass = determine_subclass(security_type, sector, market_cap, security_name)

        return LookupResult(
            found=True,
            security_name=security_name,
            security_type=security_type,
            asset_class=asset_class,
            asset_subclass=subclass,
            exchange=exchange,
            sector=sector or None,
            market_cap=market_cap,
            confidence=TICKER_CONFIDENCE if sector or indices else TICKER_BARE_CONFIDENCE,
        )


class OfflineSecurityLookup(SecurityLookupOracle):
    """ISIN prefix rules only; every ticker is a miss."""

    async def lookup_by_isin(self, isin: str, security_name: Optional[str] = None) -> LookupResult:
        return isin_prefix_lookup(isin, security_name)

    async def lookup_by_ticker(self, ticker: str, exchange: Optional[str] = None) -> LookupResult:
        return LookupResult.not_found()


def build_security_lookup() -> SecurityLookupOracle:
    if not settings.ENABLE_SECURITY_LOOKUP:
        return OfflineSecurityLookup()
    return NseSecurityLookup()
