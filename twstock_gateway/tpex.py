from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from .coordinator import fetch_parallel, first_failure
from .errors import SourceUnavailable
from .models import FinancialRecord, PriceQuote
from .normalizer import normalize_tpex_quote, record_from_structured
from .statements import build_structured_financials, rows_for_company
from .upstream import get_json

OPENAPI_BASE = "https://www.tpex.org.tw/openapi/v1"
STATEMENTS_URL = f"{OPENAPI_BASE}/tpex_openapi_stkfinstatements"
BALANCE_URL = f"{OPENAPI_BASE}/tpex_openapi_stkbalancesheets"
REVENUE_URL = f"{OPENAPI_BASE}/tpex_openapi_stkrevenues"
BASIC_INFO_URL = f"{OPENAPI_BASE}/tpex_openapi_stkbasicinfo"
DAILY_TRADING_URL = "https://www.tpex.org.tw/web/stock/aftertrading/daily_trading_info/st43_result.php"


def fetch_aa_row(source: str, url: str, stock_id: str, timeout: int, get_fn=None) -> List[Any]:
    """First ``aaData`` row of a TPEx web endpoint (daily trading, emerging board)."""
    params = {"l": "zh-tw", "o": "json", "stkno": stock_id}
    payload = get_json(source, url, params=params, timeout=timeout, get_fn=get_fn)
    rows = payload.get("aaData") if isinstance(payload, dict) else None
    if not rows or not isinstance(rows[0], list):
        raise SourceUnavailable(source, "TPEx無數據", empty=True)
    return rows[0]


class TpexClient:
    source = "tpex"

    def __init__(
        self,
        timeout: int = 15,
        get_fn: Optional[Callable[..., Any]] = None,
        max_workers: int = 4,
        parallel: bool = True,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.timeout = timeout
        self._get = get_fn
        self.max_workers = max_workers
        self.parallel = parallel
        self._today = today or date.today

    def _start_year(self) -> int:
        return self._today().year - 1

    def fetch_rows(self, url: str, stock_id: str) -> List[Dict[str, Any]]:
        params = {"stkno": stock_id, "startyy": self._start_year()}
        payload = get_json(self.source, url, params=params, timeout=self.timeout, get_fn=self._get)
        return payload if isinstance(payload, list) else []

    def fetch_structured_financials(self, stock_id: str) -> Dict[str, Any]:
        structured, _failures = self._collect_structured(stock_id)
        return structured

    def fetch_financials(self, stock_id: str) -> FinancialRecord:
        structured, failures = self._collect_structured(stock_id)
        record = record_from_structured(structured, stock_id, self.source)
        if not record.has_figures():
            if failures:
                raise first_failure(self.source, list(failures), failures)
            raise SourceUnavailable(self.source, "TPEx無此股票財報數據", empty=True)
        return record

    def _collect_structured(self, stock_id: str) -> Tuple[Dict[str, Any], Dict[str, SourceUnavailable]]:
        urls = {"income": STATEMENTS_URL, "balance": BALANCE_URL, "revenue": REVENUE_URL}
        tasks = {name: (lambda url=url: self.fetch_rows(url, stock_id)) for name, url in urls.items()}
        failures: Dict[str, SourceUnavailable] = {}
        joined = fetch_parallel(
            tasks, max_workers=self.max_workers, parallel=self.parallel, default=list, failures=failures
        )
        if len(failures) == len(tasks):
            raise first_failure(self.source, list(tasks), failures)
        structured = build_structured_financials(
            rows_for_company(joined["income"], stock_id),
            rows_for_company(joined["balance"], stock_id),
            rows_for_company(joined["revenue"], stock_id),
            source=self.source,
        )
        return structured, {name: failures[name] for name in tasks if name in failures}

    def fetch_stock_list(self) -> List[Dict[str, Any]]:
        payload = get_json(self.source, BASIC_INFO_URL, timeout=self.timeout, get_fn=self._get)
        stocks = []
        for row in payload if isinstance(payload, list) else []:
            if not isinstance(row, dict) or not row.get("公司代號"):
                continue
            stocks.append(
                {
                    "stock_id": str(row["公司代號"]).strip(),
                    "stock_name": row.get("公司名稱") or row.get("公司簡稱"),
                    "industry_category": row.get("產業別") or "興櫃其他",
                    "market_type": "TPEx",
                    "_source": "TPEx",
                }
            )
        return stocks

    def fetch_price(self, stock_id: str) -> PriceQuote:
        row = fetch_aa_row(self.source, DAILY_TRADING_URL, stock_id, self.timeout, self._get)
        try:
            quote = normalize_tpex_quote(row, stock_id, source=self.source)
        except IndexError as exc:
            raise SourceUnavailable(self.source, "TPEx數據欄位不足") from exc
        if quote.price is None:
            raise SourceUnavailable(self.source, "TPEx無成交價", empty=True)
        return quote
