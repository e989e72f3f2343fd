"""
Asset subclass taxonomy.

The taxonomy is a closed set: every classified asset carries a subclass
that belongs to its asset class. Risk level and expected return are always
derived from the taxonomy entry, never from the classifier that chose it.
"""

from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import AssetClass, RiskLevel

OTHER_SUBCLASS = "other_assets"


class SubclassMapping(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    asset_class: AssetClass
    subclass_code: str
    display_name: str
    risk_level: RiskLevel
    expected_return_range: Optional[str] = None
    expected_return_midpoint: Decimal
    keyword_patterns: tuple[str, ...] = Field(default_factory=tuple)
    description: Optional[str] = None
    sort_order: int = 0
    is_active: bool = True


def _entry(asset_class, code, name, risk, rng, mid, keywords, description, order) -> SubclassMapping:
    return SubclassMapping(
        asset_class=asset_class,
        subclass_code=code,
        display_name=name,
        risk_level=risk,
        expected_return_range=rng,
        expected_return_midpoint=Decimal(mid),
        keyword_patterns=tuple(keywords),
        description=description,
        sort_order=order,
    )


E, D, C, R, O = (
    AssetClass.EQUITY, AssetClass.DEBT, AssetClass.CASH, AssetClass.REAL_ESTATE, AssetClass.OTHER,
)

DEFAULT_TAXONOMY: list[SubclassMapping] = [
    # Equity
    _entry(E, "direct_stocks", "Direct Stocks", RiskLevel.VERY_HIGH, "12-18%", "15.00",
           ["stock", "equity", "share", "bse", "nse"],
           "Individual company stocks traded on exchanges", 1),
    _entry(E, "index_funds", "Index Funds", RiskLevel.MEDIUM, "11-13%", "12.00",
           ["index", "nifty", "sensex", "nifty50", "nifty 50"],
           "Mutual funds or ETFs tracking market indices", 2),
    _entry(E, "large_cap_funds", "Large Cap Mutual Funds", RiskLevel.MEDIUM, "11-14%", "12.50",
           ["large cap", "largecap", "bluechip", "blue chip"],
           "Funds investing in large, established companies", 3),
    _entry(E, "mid_cap_funds", "Mid Cap Mutual Funds", RiskLevel.HIGH, "13-16%", "14.50",
           ["mid cap", "midcap", "mid-cap"],
           "Funds investing in medium-sized companies", 4),
    _entry(E, "small_cap_funds", "Small Cap Mutual Funds", RiskLevel.VERY_HIGH, "14-18%", "16.00",
           ["small cap", "smallcap", "small-cap"],
           "Funds investing in smaller, high-growth companies", 5),
    _entry(E, "sectoral_funds", "Sectoral/Thematic Funds", RiskLevel.VERY_HIGH, "10-20%", "15.00",
           ["sector", "thematic", "pharma", "it", "banking", "infrastructure"],
           "Funds focused on specific sectors or themes", 6),
    _entry(E, "international_equity", "International Equity Funds", RiskLevel.HIGH, "10-15%", "12.50",
           ["international", "global", "us equity", "nasdaq", "sp500", "s&p 500"],
           "Funds investing in foreign markets", 7),
    _entry(E, "elss", "ELSS (Tax Saver Funds)", RiskLevel.HIGH, "12-15%", "13.50",
           ["elss", "tax saver", "80c"],
           "Equity funds with 3-year lock-in and tax benefits", 8),
    _entry(E, "pms_aif", "PMS / AIF", RiskLevel.VERY_HIGH, "12-20%", "16.00",
           ["pms", "aif", "portfolio management"],
           "Portfolio Management Services and Alternative Investment Funds", 9),
    # Debt
    _entry(D, "fd_bank", "Fixed Deposits (Bank)", RiskLevel.VERY_LOW, "6-7%", "6.50",
           ["fixed deposit", "fd", "bank fd", "term deposit"],
           "Bank fixed deposits with guaranteed returns", 10),
    _entry(D, "fd_corporate", "Fixed Deposits (Corporate)", RiskLevel.LOW, "7-9%", "8.00",
           ["corporate fd", "company fd", "corporate deposit"],
           "Fixed deposits with NBFCs and corporates", 11),
    _entry(D, "ppf", "Public Provident Fund (PPF)", RiskLevel.VERY_LOW, "7-8%", "7.50",
           ["ppf", "public provident"],
           "Government-backed long-term savings with tax benefits", 12),
    _entry(D, "epf_vpf", "EPF / VPF", RiskLevel.VERY_LOW, "8-9%", "8.50",
           ["epf", "vpf", "provident fund", "pf"],
           "Employer and voluntary provident fund contributions", 13),
    _entry(D, "nsc_scss", "NSC / SCSS", RiskLevel.VERY_LOW, "7-8%", "7.50",
           ["nsc", "scss", "national savings", "senior citizen"],
           "National Savings Certificate and Senior Citizen Savings Scheme", 14),
    _entry(D, "debt_mutual_funds", "Debt Mutual Funds", RiskLevel.LOW, "6-8%", "7.00",
           ["debt fund", "income fund", "bond fund", "gilt"],
           "Mutual funds investing in bonds and debt instruments", 15),
    _entry(D, "bonds", "Bonds (Corporate/Govt)", RiskLevel.LOW, "7-9%", "8.00",
           ["bond", "debenture", "govt bond", "corporate bond", "g-sec"],
           "Direct investment in government or corporate bonds", 16),
    _entry(D, "sovereign_gold_bonds", "Sovereign Gold Bonds", RiskLevel.LOW, "8-10%", "9.00",
           ["sgb", "sovereign gold", "gold bond"],
           "Government-issued gold bonds with interest", 17),
    # Cash
    _entry(C, "savings_account", "Savings Account", RiskLevel.VERY_LOW, "3-4%", "3.50",
           ["savings", "savings account", "bank account"],
           "Regular bank savings accounts", 18),
    _entry(C, "liquid_funds", "Liquid Funds", RiskLevel.VERY_LOW, "4-5%", "4.50",
           ["liquid", "liquid fund", "overnight fund"],
           "Ultra-short-term debt funds for parking surplus", 19),
    _entry(C, "fd_short_term", "Short-Term FDs (<1 year)", RiskLevel.VERY_LOW, "5-6%", "5.50",
           ["short term fd", "short fd"],
           "Fixed deposits with maturity less than 1 year", 20),
    # Real estate
    _entry(R, "primary_residence", "Primary Residence", RiskLevel.MEDIUM, "5-8%", "6.50",
           ["house", "home", "apartment", "flat", "residence"],
           "Self-occupied residential property", 21),
    _entry(R, "rental_property", "Rental Property", RiskLevel.MEDIUM, "6-10%", "8.00",
           ["rental", "rent", "investment property"],
           "Property generating rental income", 22),
    _entry(R, "reits", "REITs", RiskLevel.MEDIUM, "8-12%", "10.00",
           ["reit", "real estate investment trust"],
           "Real Estate Investment Trusts", 23),
    # Other
    _entry(O, "physical_gold", "Physical Gold/Jewelry", RiskLevel.MEDIUM, "8-10%", "9.00",
           ["gold", "jewelry", "jewellery", "physical gold"],
           "Gold coins, bars, and jewelry", 24),
    _entry(O, "gold_etf", "Gold ETF/Funds", RiskLevel.MEDIUM, "8-10%", "9.00",
           ["gold etf", "gold fund"],
           "Exchange-traded funds tracking gold prices", 25),
    _entry(O, "crypto_commodities", "Crypto/Commodities", RiskLevel.VERY_HIGH, "0-30%", "15.00",
           ["crypto", "bitcoin", "commodity", "silver"],
           "Cryptocurrencies and commodity investments", 26),
    _entry(O, OTHER_SUBCLASS, "Other Assets", RiskLevel.MEDIUM, "6-10%", "8.00",
           [],
           "Holdings that could not be classified; review manually", 27),
]


class TaxonomyError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.error_code = "TAXONOMY_INVALID"


class Taxonomy:
    """Read-only lookup over the active subclass mappings."""

    def __init__(self, mappings: Iterable[SubclassMapping]):
        active = sorted((m for m in mappings if m.is_active), key=lambda m: m.sort_order)
        self._by_code: dict[str, SubclassMapping] = {m.subclass_code: m for m in active}
        if OTHER_SUBCLASS not in self._by_code:
            raise TaxonomyError(f"Taxonomy has no '{OTHER_SUBCLASS}' entry")

    @classmethod
    def default(cls) -> "Taxonomy":
        return cls(DEFAULT_TAXONOMY)

    @property
    def mappings(self) -> list[SubclassMapping]:
        return list(self._by_code.values())

    def get(self, subclass_code: str) -> Optional[SubclassMapping]:
        return self._by_code.get(subclass_code)

    def find(self, asset_class: str, subclass_code: str) -> Optional[SubclassMapping]:
        """The entry only if the subclass belongs to the given class."""
        mapping = self._by_code.get(subclass_code)
        if mapping is None or mapping.asset_class != _value(asset_class):
            return None
        return mapping

    def other(self) -> SubclassMapping:
        return self._by_code[OTHER_SUBCLASS]

    def for_class(self, asset_class: str) -> list[SubclassMapping]:
        return [m for m in self._by_code.values() if m.asset_class == _value(asset_class)]

    def __len__(self) -> int:
        return len(self._by_code)

    def __contains__(self, subclass_code: str) -> bool:
        return subclass_code in self._by_code


def _value(asset_class) -> str:
    return asset_class.value if isinstance(asset_class, AssetClass) else str(asset_class)
