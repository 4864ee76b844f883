"""
Schema Registry — canonical fields, aliases and operators.

Single source of truth shared by the validator (name resolution, suggestions),
the intent layer (prompt field list, keyword phrases) and the data selector
(provider field-name variants).
"""

import math
import re
from typing import Any

# ─── Canonical fields ─────────────────────────────────────────

FUNDAMENTAL_FIELDS = [
    "pe_ratio",
    "peg_ratio",
    "pb_ratio",
    "ps_ratio",
    "dividend_yield",
    "beta",
    "eps",
    "book_value_per_share",
    "profit_margin",
    "operating_margin",
    "return_on_equity",
    "return_on_assets",
    "current_ratio",
    "quick_ratio",
    "interest_coverage",
    "debt_to_equity_ratio",
    "total_debt",
    "free_cash_flow",
    "debt_to_fcf_ratio",
]

SHAREHOLDING_FIELDS = [
    "promoter_holding_percentage",
    "institutional_holding_percentage",
    "public_holding_percentage",
    "foreign_institutional_holding",
    "domestic_institutional_holding",
    "mutual_fund_holding",
    "retail_holding",
    "promoter_pledge_percentage",
]

COMPANY_FIELDS = [
    "market_cap",
    "employees",
    "average_volume",
    "shares_outstanding",
    "insider_ownership_percentage",
    "institutional_ownership_percentage",
]

FINANCIAL_FIELDS = [
    "revenue",
    "ebitda",
    "revenue_yoy_growth",
    "ebitda_yoy_growth",
    "gross_profit",
    "operating_income",
    "net_income",
    "gross_margin",
    "net_margin",
    "eps_basic",
    "eps_diluted",
]

EARNINGS_FIELDS = [
    "earnings_date",
    "estimated_eps",
    "expected_revenue",
    "beat_probability",
    "analyst_target_price_low",
    "analyst_target_price_high",
    "current_price",
    "analyst_count",
    "consensus_rating",
]

# Intraday market fields served by the index endpoints
MARKET_FIELDS = [
    "percent_change",
    "change",
    "volume",
    "open_price",
    "day_high",
    "day_low",
    "previous_close",
    "year_high",
    "year_low",
    "near_week_high",
    "near_week_low",
    "total_traded_value",
]

VALID_FIELDS = (
    FUNDAMENTAL_FIELDS
    + SHAREHOLDING_FIELDS
    + COMPANY_FIELDS
    + FINANCIAL_FIELDS
    + EARNINGS_FIELDS
    + MARKET_FIELDS
)
_VALID_FIELD_SET = frozenset(VALID_FIELDS)

# Non-canonical names (already normalized) → canonical field
FIELD_ALIASES = {
    "p/e": "pe_ratio",
    "pe": "pe_ratio",
    "p/e_ratio": "pe_ratio",
    "price_to_earnings": "pe_ratio",
    "peg": "peg_ratio",
    "p/b": "pb_ratio",
    "pb": "pb_ratio",
    "p/b_ratio": "pb_ratio",
    "price_to_book": "pb_ratio",
    "ps": "ps_ratio",
    "price_to_sales": "ps_ratio",
    "roe": "return_on_equity",
    "roa": "return_on_assets",
    "mcap": "market_cap",
    "marketcap": "market_cap",
    "market_capitalization": "market_cap",
    "market_capitalisation": "market_cap",
    "div_yield": "dividend_yield",
    "dividend": "dividend_yield",
    "debt_equity": "debt_to_equity_ratio",
    "debt_to_equity": "debt_to_equity_ratio",
    "de_ratio": "debt_to_equity_ratio",
    "d/e": "debt_to_equity_ratio",
    "fcf": "free_cash_flow",
    "profit": "profit_margin",
    "net_profit": "net_margin",
    "promoter_holding": "promoter_holding_percentage",
    "institutional_holding": "institutional_holding_percentage",
    "earnings_per_share": "eps",
    "revenue_growth": "revenue_yoy_growth",
    "sales_growth": "revenue_yoy_growth",
    "price": "current_price",
    "last_price": "current_price",
    "lastprice": "current_price",
    "ltp": "current_price",
    "share_price": "current_price",
    "stock_price": "current_price",
    "pchange": "percent_change",
    "percentage_change": "percent_change",
    "change_percent": "percent_change",
    "pct_change": "percent_change",
    "traded_volume": "volume",
    "trading_volume": "volume",
    "52_week_high": "year_high",
    "52_week_low": "year_low",
    "week_high": "year_high",
    "week_low": "year_low",
}

VALID_OPERATORS = [">", "<", ">=", "<=", "=", "!=", "BETWEEN", "IN", "LIKE"]
_OPERATOR_SYNONYMS = {"==": "=", "<>": "!=", "=<": "<=", "=>": ">="}

# Provider field-name variants per canonical field, tried in order after the
# direct and lower-cased keys.
PROVIDER_FIELD_ALIASES = {
    "pe_ratio": ["peratio", "pe", "priceToEarnings", "p_e_ratio"],
    "pb_ratio": ["pbratio", "pb", "priceToBook", "p_b_ratio"],
    "market_cap": ["marketcap", "marketCap", "mcap", "mktCap", "ffmc"],
    "dividend_yield": ["dividendyield", "divyield", "yield"],
    "profit_margin": ["profitmargin", "netmargin", "margin"],
    "debt_to_equity_ratio": ["debttoequity", "deratio", "d_e_ratio"],
    "return_on_equity": ["roe", "returnonequity"],
    "return_on_assets": ["roa", "returnonassets"],
    "revenue": ["totalrevenue", "sales", "turnover"],
    "net_income": ["netincome", "profit", "netprofit"],
    "current_price": ["price", "lastPrice", "ltp", "close"],
    "promoter_holding_percentage": ["promoterholding", "promoter"],
    "revenue_yoy_growth": ["revenuegrowth", "salesgrowth"],
    "eps": ["earningsPerShare", "epsTTM", "basicEps"],
    "percent_change": ["pChange", "percentChange", "changePercent", "perChange"],
    "change": ["netChange", "priceChange"],
    "volume": ["totalTradedVolume", "tradedVolume", "vol"],
    "average_volume": ["avgVolume", "averageVolume"],
    "open_price": ["open", "openPrice"],
    "day_high": ["dayHigh", "high"],
    "day_low": ["dayLow", "low"],
    "previous_close": ["previousClose", "prevClose"],
    "year_high": ["yearHigh", "fiftyTwoWeekHigh", "week52High"],
    "year_low": ["yearLow", "fiftyTwoWeekLow", "week52Low"],
    "near_week_high": ["nearWKH", "nearWeekHigh"],
    "near_week_low": ["nearWKL", "nearWeekLow"],
    "total_traded_value": ["totalTradedValue", "turnoverValue"],
}

# Normalized-text phrases → canonical field, longest first, for keyword extraction.
FIELD_PHRASES = [
    ("debt to equity ratio", "debt_to_equity_ratio"),
    ("promoter holding", "promoter_holding_percentage"),
    ("institutional holding", "institutional_holding_percentage"),
    ("earnings per share", "eps"),
    ("return on equity", "return_on_equity"),
    ("return on assets", "return_on_assets"),
    ("debt to equity", "debt_to_equity_ratio"),
    ("revenue growth", "revenue_yoy_growth"),
    ("dividend yield", "dividend_yield"),
    ("profit margin", "profit_margin"),
    ("operating margin", "operating_margin"),
    ("percent change", "percent_change"),
    ("free cash flow", "free_cash_flow"),
    ("current ratio", "current_ratio"),
    ("net margin", "net_margin"),
    ("market cap", "market_cap"),
    ("pe ratio", "pe_ratio"),
    ("pb ratio", "pb_ratio"),
    ("ps ratio", "ps_ratio"),
    ("net income", "net_income"),
    ("52 week high", "year_high"),
    ("52 week low", "year_low"),
    ("revenue", "revenue"),
    ("dividend", "dividend_yield"),
    ("ebitda", "ebitda"),
    ("volume", "volume"),
    ("price", "current_price"),
    ("beta", "beta"),
    ("eps", "eps"),
]

PERCENTAGE_FIELDS = {
    "dividend_yield",
    "profit_margin",
    "operating_margin",
    "return_on_equity",
    "return_on_assets",
    "gross_margin",
    "net_margin",
    "promoter_holding_percentage",
    "institutional_holding_percentage",
    "public_holding_percentage",
    "insider_ownership_percentage",
    "institutional_ownership_percentage",
    "promoter_pledge_percentage",
}

RATIO_FIELDS = {
    "pe_ratio",
    "peg_ratio",
    "pb_ratio",
    "ps_ratio",
    "current_ratio",
    "quick_ratio",
    "debt_to_equity_ratio",
}

CURRENCY_FIELDS = {
    "market_cap",
    "revenue",
    "ebitda",
    "gross_profit",
    "operating_income",
    "net_income",
    "free_cash_flow",
    "total_debt",
    "expected_revenue",
    "current_price",
}

DATE_FIELDS = {"earnings_date"}

_WHITESPACE = re.compile(r"[\s\-]+")


def normalize_field_name(name: Any) -> str:
    """Lower-case, trim and underscore-join a field name."""
    return _WHITESPACE.sub("_", str(name or "").strip().lower())


def resolve_field(name: Any) -> str | None:
    """Canonical field for a raw or aliased name, or None."""
    normalized = normalize_field_name(name)
    if not normalized:
        return None
    if normalized in _VALID_FIELD_SET:
        return normalized
    return FIELD_ALIASES.get(normalized)


def canonical_operator(operator: Any) -> str | None:
    """Canonical operator token, or None when not recognized."""
    token = str(operator or "").strip()
    if not token:
        return None
    token = _OPERATOR_SYNONYMS.get(token, token).upper()
    return token if token in VALID_OPERATORS else None


def field_type(field: str) -> str:
    """Classify a canonical field: percentage, ratio, currency, date or number."""
    if field in PERCENTAGE_FIELDS:
        return "percentage"
    if field in RATIO_FIELDS:
        return "ratio"
    if field in CURRENCY_FIELDS:
        return "currency"
    if field in DATE_FIELDS:
        return "date"
    return "number"


def is_value_plausible(field: str, value: Any) -> bool:
    """Check a condition operand against the field's natural range."""
    if isinstance(value, list):
        return all(is_value_plausible(field, item) for item in value)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return True
    if isinstance(value, float) and math.isnan(value):
        return False
    if field in PERCENTAGE_FIELDS:
        return 0 <= value <= 100
    if field in RATIO_FIELDS:
        return value >= 0
    return True
