from datetime import date
from typing import Any, Callable, Optional

from .errors import SourceUnavailable
from .models import FinancialRecord, PriceQuote
from .normalizer import normalize_yahoo_chart, normalize_yahoo_financials
from .upstream import get_json

QUOTE_SUMMARY_URL = "https://query1.finance.yahoo.com/v10/finance/quoteSummary/{symbol}"
CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
SUMMARY_MODULES = "financialData,defaultKeyStatistics,summaryDetail"
SYMBOL_SUFFIXES = (".TW", ".TWO", "")


class YahooClient:
    source = "yahoo"

    def __init__(
        self,
        timeout: int = 15,
        get_fn: Optional[Callable[..., Any]] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.timeout = timeout
        self._get = get_fn
        self._today = today or date.today

    def fetch_financials(self, stock_id: str) -> FinancialRecord:
        return self._try_symbols(stock_id, self._fetch_summary)

    def fetch_price(self, stock_id: str) -> PriceQuote:
        return self._try_symbols(stock_id, self._fetch_chart)

    def _try_symbols(self, stock_id: str, fetch_fn: Callable[[str, str], Any]) -> Any:
        reasons = []
        all_empty = True
        for suffix in SYMBOL_SUFFIXES:
            symbol = f"{stock_id}{suffix}"
            try:
                return fetch_fn(symbol, stock_id)
            except SourceUnavailable as exc:
                reasons.append(f"{symbol}: {exc.reason}")
                all_empty = all_empty and exc.empty
        raise SourceUnavailable(self.source, "Yahoo所有格式都失敗 (" + "; ".join(reasons) + ")", empty=all_empty)

    def _fetch_summary(self, symbol: str, stock_id: str) -> FinancialRecord:
        url = QUOTE_SUMMARY_URL.format(symbol=symbol)
        payload = get_json(self.source, url, params={"modules": SUMMARY_MODULES}, timeout=self.timeout, get_fn=self._get)
        results = ((payload or {}).get("quoteSummary") or {}).get("result") if isinstance(payload, dict) else None
        if not results:
            raise SourceUnavailable(self.source, "Yahoo Finance無數據", empty=True)
        record = normalize_yahoo_financials(results[0], stock_id, today=self._today().isoformat())
        if not record.has_figures():
            raise SourceUnavailable(self.source, "Yahoo Finance無財務數據", empty=True)
        return record

    def _fetch_chart(self, symbol: str, stock_id: str) -> PriceQuote:
        params = {"interval": "1d", "range": "1mo"}
        payload = get_json(self.source, CHART_URL.format(symbol=symbol), params=params, timeout=self.timeout, get_fn=self._get)
        results = ((payload or {}).get("chart") or {}).get("result") if isinstance(payload, dict) else None
        if not results:
            raise SourceUnavailable(self.source, "無圖表數據", empty=True)
        try:
            quote = normalize_yahoo_chart(results[0], stock_id)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise SourceUnavailable(self.source, f"圖表數據解析失敗: {exc}") from exc
        if quote.price is None:
            raise SourceUnavailable(self.source, "無成交價", empty=True)
        return quote
