from typing import Any, Callable, Dict, List, Optional, Tuple

from .coordinator import fetch_parallel, first_failure
from .errors import SourceUnavailable
from .models import FinancialRecord, PriceQuote
from .normalizer import normalize_twse_quote, record_from_structured
from .statements import COMPANY_KEYS, build_structured_financials, rows_for_company
from .upstream import get_json

OPENAPI_BASE = "https://openapi.twse.com.tw/v1/opendata"
MIS_QUOTE_URL = "https://mis.twse.com.tw/stock/api/getStockInfo.jsp"

INCOME_DATASETS = ["t187ap06_L_ci", "t187ap06_L_fh", "t187ap06_L_bd", "t187ap06_L_ins"]
BALANCE_DATASETS = ["t187ap07_L_ci", "t187ap07_L_fh", "t187ap07_L_bd", "t187ap07_L_ins"]
RATIO_DATASETS = ["t187ap17_L", "t187ap46_L"]
MONTHLY_DATASETS = ["t187ap05_L"]
STOCK_LIST_DATASETS = ["t187ap03_L"]

DATASET_GROUPS = {
    "quarterly": INCOME_DATASETS + MONTHLY_DATASETS,
    "annual": RATIO_DATASETS,
    "monthly": MONTHLY_DATASETS,
    "stocks": STOCK_LIST_DATASETS,
    "balance": BALANCE_DATASETS,
}


class TwseClient:
    source = "twse"

    def __init__(
        self,
        timeout: int = 15,
        get_fn: Optional[Callable[..., Any]] = None,
        max_workers: int = 4,
        parallel: bool = True,
    ) -> None:
        self.timeout = timeout
        self._get = get_fn
        self.max_workers = max_workers
        self.parallel = parallel

    def fetch_dataset(self, dataset: str) -> List[Dict[str, Any]]:
        payload = get_json(self.source, f"{OPENAPI_BASE}/{dataset}", timeout=self.timeout, get_fn=self._get)
        return payload if isinstance(payload, list) else []

    def fetch_datasets(self, datasets: List[str]) -> List[Dict[str, Any]]:
        tasks = {name: (lambda name=name: self.fetch_dataset(name)) for name in datasets}
        results = fetch_parallel(tasks, max_workers=self.max_workers, parallel=self.parallel, default=list)
        rows: List[Dict[str, Any]] = []
        for name in datasets:
            rows.extend(results.get(name) or [])
        return rows

    def fetch_dataset_group(self, group: str) -> List[Dict[str, Any]]:
        datasets = DATASET_GROUPS.get(group)
        if datasets is None:
            raise ValueError(f"Invalid type: {group}")
        rows = self.fetch_datasets(datasets)
        return [row for row in rows if isinstance(row, dict) and any(row.get(key) for key in COMPANY_KEYS)]

    def fetch_structured_financials(self, stock_id: str) -> Dict[str, Any]:
        structured, _failures = self._collect_structured(stock_id)
        return structured

    def fetch_financials(self, stock_id: str) -> FinancialRecord:
        structured, failures = self._collect_structured(stock_id)
        record = record_from_structured(structured, stock_id, self.source)
        if not record.has_figures():
            if failures:
                raise first_failure(self.source, list(failures), failures)
            raise SourceUnavailable(self.source, "TWSE無此股票財報數據", empty=True)
        return record

    def _collect_structured(self, stock_id: str) -> Tuple[Dict[str, Any], Dict[str, SourceUnavailable]]:
        groups = {
            "income": INCOME_DATASETS,
            "balance": BALANCE_DATASETS,
            "revenue": MONTHLY_DATASETS,
            "ratio": RATIO_DATASETS,
        }
        tasks = {
            dataset: (lambda dataset=dataset: self.fetch_dataset(dataset))
            for datasets in groups.values()
            for dataset in datasets
        }
        failures: Dict[str, SourceUnavailable] = {}
        results = fetch_parallel(
            tasks, max_workers=self.max_workers, parallel=self.parallel, default=list, failures=failures
        )
        if len(failures) == len(tasks):
            raise first_failure(self.source, list(tasks), failures)
        joined = {name: [row for dataset in datasets for row in results[dataset]] for name, datasets in groups.items()}
        structured = build_structured_financials(
            rows_for_company(joined["income"], stock_id),
            rows_for_company(joined["balance"], stock_id),
            rows_for_company(joined["revenue"], stock_id),
            rows_for_company(joined["ratio"], stock_id),
            source=self.source,
        )
        return structured, {name: failures[name] for name in tasks if name in failures}

    def fetch_stock_list(self) -> List[Dict[str, Any]]:
        stocks = []
        for row in self.fetch_dataset_group("stocks"):
            stocks.append(
                {
                    "stock_id": str(row.get("公司代號", "")).strip(),
                    "stock_name": row.get("公司簡稱") or row.get("公司名稱"),
                    "industry_category": row.get("產業別") or "",
                    "market_type": "TWSE",
                    "_source": "TWSE",
                }
            )
        return stocks

    def fetch_price(self, stock_id: str) -> PriceQuote:
        params = {"ex_ch": f"tse_{stock_id}.tw|otc_{stock_id}.tw"}
        payload = get_json(self.source, MIS_QUOTE_URL, params=params, timeout=self.timeout, get_fn=self._get)
        messages = payload.get("msgArray") if isinstance(payload, dict) else None
        if not messages:
            raise SourceUnavailable(self.source, "TWSE無數據", empty=True)
        quote = normalize_twse_quote(messages[0], stock_id)
        if quote.price is None:
            raise SourceUnavailable(self.source, "TWSE無成交價", empty=True)
        return quote
