import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from .models import FinancialRecord, PriceQuote


EMPTY_MARKERS = {"none", "null", "nan", "n/a", "na", "-", "—", "--", "---", "x"}

MOPS_PATTERNS = {
    "eps": [r"基本每股盈餘"],
    "revenue": [r"營業收入(?:合計|淨額)?"],
    "profit": [r"本期(?:稅後)?淨利", r"淨利（淨損）歸屬於母公司業主"],
    "roe": [r"權益報酬率", r"股東權益報酬率"],
}

# unit or period qualifiers such as （元） and an optional trailing colon
_LABEL_SUFFIX = r"\s*(?:[（(][^）)]{0,20}[）)]\s*)*[:：]?"


def coerce_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        return coerce_number(value.get("raw"))
    if isinstance(value, (int, float)):
        if value != value:
            return None
        return float(value)
    try:
        cleaned = str(value).strip()
        if not cleaned or cleaned.lower() in EMPTY_MARKERS:
            return None
        negative = cleaned.startswith("(") and cleaned.endswith(")")
        cleaned = cleaned.replace("(", "").replace(")", "")
        cleaned = cleaned.replace(",", "").replace("%", "").replace("$", "")
        cleaned = cleaned.replace("−", "-").replace("–", "-").replace("+", "")
        match = re.search(r"-?\d+(?:\.\d+)?", cleaned)
        if not match:
            return None
        number = float(match.group(0))
        if negative and number > 0:
            number = -number
        return number
    except (TypeError, ValueError):
        return None


def first_number(row: Dict[str, Any], keys: Iterable[str]) -> Optional[float]:
    for key in keys:
        value = coerce_number(row.get(key))
        if value is not None:
            return value
    return None


def percent_of(part: Optional[float], whole: Optional[float]) -> Optional[float]:
    if part is None or whole is None or whole == 0:
        return None
    return round(part / whole * 100, 2)


def change_percent(price: Optional[float], change: Optional[float]) -> Optional[float]:
    if price is None or change is None:
        return None
    return percent_of(change, price - change)


def normalize_date(value: Any) -> Optional[str]:
    """Return ``YYYY-MM-DD`` for Gregorian, compact, slashed or ROC (民國) dates."""
    if value is None:
        return None
    text = str(value).strip().split("T")[0].split(" ")[0]
    if not text:
        return None
    digits = re.sub(r"\D", "", text)
    parts = [p for p in re.split(r"[/\-.]", text) if p]
    try:
        if len(parts) == 3:
            year, month, day = (int(p) for p in parts)
        elif len(digits) == 8:
            year, month, day = int(digits[:4]), int(digits[4:6]), int(digits[6:8])
        elif len(digits) == 7:
            year, month, day = int(digits[:3]), int(digits[3:5]), int(digits[5:7])
        else:
            return None
        if year < 1000:
            year += 1911
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def iso_to_timestamp(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    return int(parsed.timestamp())


def timestamp_to_iso(value: Any) -> Optional[str]:
    number = coerce_number(value)
    if number is None:
        return None
    return datetime.fromtimestamp(number, tz=timezone.utc).date().isoformat()


def normalize_finmind_financials(rows: List[Dict[str, Any]], stock_id: str) -> FinancialRecord:
    if "type" in rows[-1]:
        latest_date = max(str(row.get("date", "")) for row in rows)
        values: Dict[str, Optional[float]] = {}
        for row in rows:
            if str(row.get("date", "")) == latest_date:
                values[str(row.get("type"))] = coerce_number(row.get("value"))
        revenue = values.get("Revenue")
        profit = values.get("IncomeAfterTaxes")
        if profit is None:
            profit = values.get("EquityAttributableToOwnersOfParent")
        return FinancialRecord(
            stock_id=stock_id,
            source="finmind",
            eps=values.get("EPS"),
            revenue=revenue,
            profit=profit,
            gross_margin=percent_of(values.get("GrossProfit"), revenue),
            operating_margin=percent_of(values.get("OperatingIncome"), revenue),
            date=normalize_date(latest_date),
        )

    latest = rows[-1]
    return FinancialRecord(
        stock_id=stock_id,
        source="finmind",
        eps=coerce_number(latest.get("eps")),
        revenue=coerce_number(latest.get("revenue")),
        profit=coerce_number(latest.get("net_income")),
        gross_margin=coerce_number(latest.get("gross_margin")),
        operating_margin=coerce_number(latest.get("operating_margin")),
        date=normalize_date(latest.get("date")),
    )


def normalize_finmind_price(rows: List[Dict[str, Any]], stock_id: str) -> PriceQuote:
    latest = rows[-1]
    price = coerce_number(latest.get("close"))
    change = first_number(latest, ["spread", "change"])
    history = [
        {
            "date": normalize_date(row.get("date")),
            "close": coerce_number(row.get("close")),
            "volume": first_number(row, ["Trading_Volume", "Trading_volume"]) or 0,
        }
        for row in rows
        if coerce_number(row.get("close")) is not None
    ]
    return PriceQuote(
        stock_id=stock_id,
        source="finmind",
        price=price,
        change=change,
        change_percent=change_percent(price, change),
        volume=first_number(latest, ["Trading_Volume", "Trading_volume"]),
        date=normalize_date(latest.get("date")),
        historical_data=history,
    )


def normalize_twse_quote(stock: Dict[str, Any], stock_id: str) -> PriceQuote:
    price = coerce_number(stock.get("z"))
    previous_close = coerce_number(stock.get("y"))
    change = None
    if price is not None and previous_close is not None:
        change = round(price - previous_close, 4)
    return PriceQuote(
        stock_id=stock_id,
        source="twse",
        price=price,
        change=change,
        change_percent=percent_of(change, previous_close),
        volume=coerce_number(stock.get("v")),
        date=normalize_date(stock.get("d")),
    )


def normalize_tpex_quote(row: List[Any], stock_id: str, source: str = "tpex") -> PriceQuote:
    price = coerce_number(row[2])
    change = coerce_number(row[3])
    return PriceQuote(
        stock_id=stock_id,
        source=source,
        price=price,
        change=change,
        change_percent=coerce_number(row[4]) if len(row) > 4 else change_percent(price, change),
        volume=coerce_number(row[1]),
        date=normalize_date(row[0]),
    )


def normalize_yahoo_chart(result: Dict[str, Any], stock_id: str) -> PriceQuote:
    meta = result.get("meta") or {}
    price = coerce_number(meta.get("regularMarketPrice"))
    previous_close = coerce_number(meta.get("previousClose"))
    if previous_close is None:
        previous_close = coerce_number(meta.get("chartPreviousClose"))
    change = None
    if price is not None and previous_close is not None:
        change = round(price - previous_close, 4)

    quote = ((result.get("indicators") or {}).get("quote") or [{}])[0]
    closes = quote.get("close") or []
    volumes = quote.get("volume") or []
    history = []
    for index, stamp in enumerate(result.get("timestamp") or []):
        close = coerce_number(closes[index]) if index < len(closes) else None
        if close is None:
            continue
        volume = coerce_number(volumes[index]) if index < len(volumes) else None
        history.append({"date": timestamp_to_iso(stamp), "close": close, "volume": volume or 0})

    return PriceQuote(
        stock_id=stock_id,
        source="yahoo",
        price=price,
        change=change,
        change_percent=percent_of(change, previous_close),
        volume=coerce_number(meta.get("regularMarketVolume")),
        date=timestamp_to_iso(meta.get("regularMarketTime")),
        historical_data=history,
    )


def normalize_yahoo_financials(result: Dict[str, Any], stock_id: str, today: Optional[str] = None) -> FinancialRecord:
    financial = result.get("financialData") or {}
    stats = result.get("defaultKeyStatistics") or {}
    summary = result.get("summaryDetail") or {}

    def fraction_as_percent(value: Any) -> Optional[float]:
        number = coerce_number(value)
        return None if number is None else round(number * 100, 2)

    eps = coerce_number(stats.get("trailingEps"))
    if eps is None:
        eps = coerce_number(financial.get("epsTrailingTwelveMonths"))
    pe_ratio = coerce_number(summary.get("trailingPE"))
    if pe_ratio is None:
        pe_ratio = coerce_number(financial.get("trailingPE"))
    profit = coerce_number(stats.get("netIncomeToCommon"))
    if profit is None:
        profit = coerce_number(financial.get("netIncomeToCommon"))

    return FinancialRecord(
        stock_id=stock_id,
        source="yahoo",
        eps=eps,
        revenue=coerce_number(financial.get("totalRevenue")),
        profit=profit,
        roe=fraction_as_percent(financial.get("returnOnEquity")),
        gross_margin=fraction_as_percent(financial.get("grossMargins")),
        operating_margin=fraction_as_percent(financial.get("operatingMargins")),
        price=coerce_number(financial.get("currentPrice")),
        pe_ratio=pe_ratio,
        date=today or date.today().isoformat(),
    )


def extract_mops_figures(raw_html: str) -> Dict[str, Optional[float]]:
    """Read MOPS table rows: a label cell matched against MOPS_PATTERNS, the value in a later cell."""
    soup = BeautifulSoup(raw_html or "", "html.parser")
    figures: Dict[str, Optional[float]] = {name: None for name in MOPS_PATTERNS}
    for row in soup.find_all("tr"):
        cells = [cell.get_text(" ", strip=True) for cell in row.find_all(["th", "td"])]
        for index, cell in enumerate(cells):
            field_name = _mops_field(cell)
            if field_name is None:
                continue
            if figures[field_name] is None:
                figures[field_name] = next(
                    (value for value in map(coerce_number, cells[index + 1 :]) if value is not None),
                    None,
                )
            break
    return figures


def _mops_field(label: str) -> Optional[str]:
    for field_name, patterns in MOPS_PATTERNS.items():
        if any(re.fullmatch(pattern + _LABEL_SUFFIX, label) for pattern in patterns):
            return field_name
    return None


def normalize_mops_financials(raw_html: str, stock_id: str, today: Optional[str] = None) -> FinancialRecord:
    figures = extract_mops_figures(raw_html)
    return FinancialRecord(
        stock_id=stock_id,
        source="xinggui",
        eps=figures["eps"],
        revenue=figures["revenue"],
        profit=figures["profit"],
        roe=figures["roe"],
        date=today or date.today().isoformat(),
    )


def latest_period_value(periods: Dict[str, Any]) -> Optional[float]:
    quarters = periods.get("quarters") or {}
    ranked = sorted(
        (key for key in quarters if re.fullmatch(r"Q\d", key)),
        key=lambda key: int(key[1:]),
    )
    if ranked:
        return quarters[ranked[-1]]
    return periods.get("year")


def record_from_structured(structured: Dict[str, Any], stock_id: str, source: str) -> FinancialRecord:
    growth = structured.get("revenueGrowth") or {}
    return FinancialRecord(
        stock_id=stock_id,
        source=source,
        eps=latest_period_value(structured.get("eps") or {}),
        roe=latest_period_value(structured.get("roe") or {}),
        gross_margin=latest_period_value(structured.get("profitMargin") or {}),
        extra={"revenueGrowth": growth.get("year")},
    )
