"""Emerging board (興櫃) lookups: TPEx emerging endpoints plus MOPS filings."""
from datetime import date
from typing import Any, Callable, Dict, Optional

from .errors import SourceUnavailable
from .models import FinancialRecord, PriceQuote
from .normalizer import normalize_mops_financials, normalize_tpex_quote
from .tpex import DAILY_TRADING_URL, fetch_aa_row
from .upstream import post_form_text

BASIC_INFO_URL = "https://www.tpex.org.tw/web/regular_emerging/raising/raising_result.php"
MOPS_URL = "https://mops.twse.com.tw/mops/web/ajax_t100sb15"
UNKNOWN = "未知"


class XingGuiClient:
    source = "xinggui"

    def __init__(
        self,
        timeout: int = 15,
        get_fn: Optional[Callable[..., Any]] = None,
        post_fn: Optional[Callable[..., Any]] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.timeout = timeout
        self._get = get_fn
        self._post = post_fn
        self._today = today or date.today

    def fetch_basic_info(self, stock_id: str) -> Dict[str, Any]:
        row = fetch_aa_row(self.source, BASIC_INFO_URL, stock_id, self.timeout, self._get)
        padded = list(row) + [None] * 4
        return {
            "stockId": stock_id,
            "name": padded[1] or UNKNOWN,
            "industry": padded[2] or UNKNOWN,
            "listingDate": padded[3] or UNKNOWN,
            "source": "tpex_xinggui",
        }

    def fetch_financials(self, stock_id: str) -> FinancialRecord:
        form = {
            "encodeURIComponent": "1",
            "step": "1",
            "firstin": "1",
            "off": "1",
            "co_id": stock_id,
            "TYPEK": "all",
        }
        html_text = post_form_text(self.source, MOPS_URL, form, timeout=self.timeout, post_fn=self._post)
        record = normalize_mops_financials(html_text, stock_id, today=self._today().isoformat())
        if not record.has_figures():
            raise SourceUnavailable(self.source, "公開資訊觀測站無財務數據", empty=True)
        return record

    def fetch_price(self, stock_id: str) -> PriceQuote:
        row = fetch_aa_row(self.source, DAILY_TRADING_URL, stock_id, self.timeout, self._get)
        try:
            quote = normalize_tpex_quote(row, stock_id, source=self.source)
        except IndexError as exc:
            raise SourceUnavailable(self.source, "興櫃股價欄位不足") from exc
        if quote.price is None:
            raise SourceUnavailable(self.source, "興櫃無成交價", empty=True)
        return quote
