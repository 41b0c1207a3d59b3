from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

from .errors import SourceUnavailable
from .models import FinancialRecord, PriceQuote
from .normalizer import normalize_finmind_financials, normalize_finmind_price
from .upstream import get_json

FINMIND_URL = "https://api.finmindtrade.com/api/v4/data"
PRICE_LOOKBACK_DAYS = 30


class FinMindClient:
    source = "finmind"

    def __init__(
        self,
        token: str = "",
        timeout: int = 15,
        get_fn: Optional[Callable[..., Any]] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.token = token
        self.timeout = timeout
        self._get = get_fn
        self._today = today or date.today

    def fetch_dataset(
        self,
        dataset: str,
        data_id: Optional[str] = None,
        start_date: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> Dict[str, Any]:
        params = {"dataset": dataset}
        if data_id:
            params["data_id"] = data_id
        if start_date:
            params["start_date"] = start_date
        token = token or self.token
        if token:
            params["token"] = token

        payload = get_json(self.source, FINMIND_URL, params=params, timeout=timeout or self.timeout, get_fn=self._get)
        if not isinstance(payload, dict) or not payload:
            raise SourceUnavailable(self.source, "FinMind返回空數據", empty=True)
        msg = payload.get("msg")
        if msg and msg != "success":
            raise SourceUnavailable(self.source, f"FinMind: {msg}", empty=True)
        data = payload.get("data")
        if not data:
            raise SourceUnavailable(self.source, "FinMind無此股票數據", empty=True)
        return payload

    def fetch_rows(self, dataset: str, stock_id: str, start_date: Optional[str] = None) -> List[Dict[str, Any]]:
        payload = self.fetch_dataset(dataset, data_id=stock_id, start_date=start_date)
        rows = payload["data"]
        if not isinstance(rows, list):
            raise SourceUnavailable(self.source, "FinMind數據結構無效")
        return rows

    def fetch_financials(self, stock_id: str) -> FinancialRecord:
        rows = self.fetch_rows("TaiwanStockFinancialStatements", stock_id)
        try:
            record = normalize_finmind_financials(rows, stock_id)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise SourceUnavailable(self.source, f"FinMind數據解析失敗: {exc}") from exc
        if not record.has_figures():
            raise SourceUnavailable(self.source, "FinMind無財務數據", empty=True)
        return record

    def fetch_price(self, stock_id: str) -> PriceQuote:
        start = (self._today() - timedelta(days=PRICE_LOOKBACK_DAYS)).isoformat()
        rows = self.fetch_rows("TaiwanStockPrice", stock_id, start_date=start)
        try:
            quote = normalize_finmind_price(rows, stock_id)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise SourceUnavailable(self.source, f"FinMind股價解析失敗: {exc}") from exc
        if quote.price is None:
            raise SourceUnavailable(self.source, "FinMind無收盤價", empty=True)
        return quote
