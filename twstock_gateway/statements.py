"""Build per-period EPS / ROE / margin / revenue-growth tables from TWSE and
TPEx open-data rows.

Field names follow the exchanges' Chinese column headers. The two exchanges
use slightly different headers for the same figure, so every lookup takes an
ordered list of candidate columns.
"""
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from .normalizer import first_number


EPS_KEYS = ["基本每股盈餘（元）", "基本每股盈餘"]
NET_INCOME_KEYS = ["淨利（淨損）歸屬於母公司業主", "本期淨利（淨損）", "本期稅後淨利（淨損）"]
EQUITY_KEYS = [
    "股東權益總額",
    "權益總額",
    "權益-歸屬於母公司業主",
    "歸屬於母公司業主之權益合計",
    "權益總計",
]
REVENUE_KEYS = ["營業收入"]
GROSS_PROFIT_KEYS = ["營業毛利（毛損）淨額", "營業毛利（毛損）"]
COST_KEYS = ["營業成本", "銷貨成本"]
RATIO_MARGIN_KEYS = ["毛利率(%)(營業毛利)/(營業收入)"]
MONTH_REVENUE_KEYS = ["營業收入-當月營收", "當月營收", "營業收入"]
MONTH_YOY_KEYS = ["營業收入-去年同月增減(%)"]
YEAR_MONTH_KEY = "資料年月"
COMPANY_KEYS = ("公司代號", "公司代碼")


def empty_structure(source: str) -> Dict[str, Any]:
    return {
        "eps": {"quarters": {}, "year": None},
        "roe": {"quarters": {}, "year": None},
        "revenueGrowth": {"months": {}, "quarters": {}, "year": None},
        "profitMargin": {"quarters": {}, "year": None},
        "_debug": {"source": source},
    }


def rows_for_company(rows: List[Dict[str, Any]], stock_id: str) -> List[Dict[str, Any]]:
    matched = []
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        if any(str(row.get(key, "")).strip() == stock_id for key in COMPANY_KEYS):
            matched.append(row)
    return matched


def period_key(quarter: Any) -> str:
    text = str(quarter or "").strip()
    if text in {"", "0", "00"}:
        return "year"
    return f"Q{text.lstrip('0') or text}"


def _assign(block: Dict[str, Any], quarter: Any, value: float) -> None:
    key = period_key(quarter)
    if key == "year":
        block["year"] = value
    else:
        block["quarters"][key] = value


def year_month(value: Any) -> Optional[Tuple[int, int]]:
    """Parse ``YYYYMM`` or ROC ``YYYMM`` into a Gregorian (year, month)."""
    text = "".join(ch for ch in str(value or "") if ch.isdigit())
    if len(text) == 6:
        year, month = int(text[:4]), int(text[4:6])
    elif len(text) == 5:
        year, month = int(text[:3]) + 1911, int(text[3:5])
    else:
        return None
    if not 1 <= month <= 12:
        return None
    return year, month


def build_structured_financials(
    income_rows: List[Dict[str, Any]],
    balance_rows: List[Dict[str, Any]],
    revenue_rows: List[Dict[str, Any]],
    ratio_rows: Optional[List[Dict[str, Any]]] = None,
    source: str = "twse",
) -> Dict[str, Any]:
    ratio_rows = ratio_rows or []
    result = empty_structure(source)
    result["_debug"].update(
        {
            "incomeCount": len(income_rows),
            "balanceCount": len(balance_rows),
            "revenueCount": len(revenue_rows),
            "ratioCount": len(ratio_rows),
        }
    )

    for row in income_rows:
        eps = first_number(row, EPS_KEYS)
        if eps is not None:
            _assign(result["eps"], row.get("季別"), eps)

    _fill_roe(result["roe"], income_rows, balance_rows)
    _fill_margin(result["profitMargin"], income_rows, ratio_rows)

    if revenue_rows:
        if source == "tpex":
            result["revenueGrowth"] = tpex_revenue_growth(revenue_rows)
        else:
            result["revenueGrowth"] = twse_revenue_growth(revenue_rows)
    return result


def _fill_roe(block: Dict[str, Any], income_rows, balance_rows) -> None:
    balance_by_period = {}
    for row in balance_rows:
        balance_by_period.setdefault((row.get("年度"), row.get("季別")), row)

    for row in income_rows:
        net_income = first_number(row, NET_INCOME_KEYS)
        if net_income is None:
            continue
        balance = balance_by_period.get((row.get("年度"), row.get("季別")))
        if balance is None:
            continue
        equity = first_number(balance, EQUITY_KEYS)
        if not equity:
            continue
        _assign(block, row.get("季別"), round(net_income / equity * 100, 2))


def _fill_margin(block: Dict[str, Any], income_rows, ratio_rows) -> None:
    for row in ratio_rows:
        margin = first_number(row, RATIO_MARGIN_KEYS)
        if margin is not None:
            _assign(block, row.get("季別"), margin)
    if block["quarters"] or block["year"] is not None:
        return

    for row in income_rows:
        revenue = first_number(row, REVENUE_KEYS)
        if not revenue:
            continue
        gross = first_number(row, GROSS_PROFIT_KEYS)
        if gross is None:
            cost = first_number(row, COST_KEYS)
            if cost is None:
                continue
            gross = revenue - cost
        _assign(block, row.get("季別"), round(gross / revenue * 100, 2))


def twse_revenue_growth(revenue_rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    growth = {"months": {}, "quarters": {}, "year": None}
    for row in revenue_rows:
        ym = str(row.get(YEAR_MONTH_KEY) or "").strip()
        value = first_number(row, MONTH_YOY_KEYS)
        if ym and value is not None:
            growth["months"][ym] = value

    ordered = sorted(revenue_rows, key=lambda r: str(r.get(YEAR_MONTH_KEY) or ""), reverse=True)
    if ordered:
        growth["year"] = first_number(ordered[0], MONTH_YOY_KEYS)
    growth["quarters"] = quarterly_yoy_growth(revenue_rows)
    return growth


def tpex_revenue_growth(revenue_rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    growth = {"months": {}, "quarters": {}, "year": None}
    ordered = sorted(revenue_rows, key=lambda r: str(r.get(YEAR_MONTH_KEY) or ""), reverse=True)
    by_month = {str(r.get(YEAR_MONTH_KEY) or ""): first_number(r, MONTH_REVENUE_KEYS) for r in ordered}

    for index, row in enumerate(ordered):
        ym = str(row.get(YEAR_MONTH_KEY) or "")
        current = first_number(row, MONTH_REVENUE_KEYS)
        if not ym or current is None:
            continue
        if index + 1 < len(ordered):
            previous = first_number(ordered[index + 1], MONTH_REVENUE_KEYS)
            if previous:
                growth["months"][ym] = round((current - previous) / previous * 100, 2)
        if len(ordered) > 12 and len(ym) == 5:
            last_year = f"{int(ym[:3]) - 1:03d}{ym[3:]}"
            base = by_month.get(last_year)
            if base:
                growth["months"][f"{ym}_yoy"] = round((current - base) / base * 100, 2)

    current_total = _sum_revenue(ordered[0:12])
    previous_total = _sum_revenue(ordered[12:24])
    if current_total > 0 and previous_total > 0:
        growth["year"] = round((current_total - previous_total) / previous_total * 100, 2)
    growth["quarters"] = quarterly_yoy_growth(revenue_rows)
    return growth


def _sum_revenue(rows: List[Dict[str, Any]]) -> float:
    return sum(first_number(row, MONTH_REVENUE_KEYS) or 0.0 for row in rows)


def quarterly_yoy_growth(revenue_rows: List[Dict[str, Any]]) -> Dict[str, float]:
    """Sum monthly revenue per quarter and compare with the same quarter a year
    earlier. Later years overwrite earlier ones, so each ``Qn`` holds the most
    recent comparison available."""
    totals: Dict[Tuple[int, int], float] = defaultdict(float)
    for row in revenue_rows:
        parsed = year_month(row.get(YEAR_MONTH_KEY))
        revenue = first_number(row, MONTH_REVENUE_KEYS)
        if parsed is None or revenue is None:
            continue
        year, month = parsed
        totals[(year, (month + 2) // 3)] += revenue

    growth: Dict[str, float] = {}
    for year, quarter in sorted(totals):
        current = totals[(year, quarter)]
        previous = totals.get((year - 1, quarter))
        if current and previous:
            growth[f"Q{quarter}"] = round((current - previous) / previous * 100, 2)
    return growth
