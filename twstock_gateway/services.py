import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from .cache import TTLCache
from .config import AppConfig, load_config
from .coordinator import FallbackCoordinator, build_sources, fetch_parallel
from .errors import InvalidRequest, NoDataAvailable, SourceUnavailable
from .finmind import FinMindClient
from .models import PriceQuote
from .normalizer import iso_to_timestamp
from .run_logger import log_step
from .tpex import TpexClient
from .twse import TwseClient
from .xinggui import XingGuiClient
from .yahoo import YahooClient

logger = logging.getLogger(__name__)

LISTED_STOCKS_KEY = "listed_stocks"
XINGGUI_DATA_TYPES = ("basic", "financials", "price")


class MarketDataService:
    """Wires the per-source clients into the financial and price fallback chains."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        get_fn: Optional[Callable[..., Any]] = None,
        post_fn: Optional[Callable[..., Any]] = None,
        parallel: bool = True,
        clock: Optional[Callable[[], float]] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.config = config or load_config()
        timeout = self.config.upstream_timeout_seconds
        workers = self.config.parallel_max_workers

        self.finmind = FinMindClient(self.config.finmind_token, timeout=timeout, get_fn=get_fn, today=today)
        self.twse = TwseClient(timeout=timeout, get_fn=get_fn, max_workers=workers, parallel=parallel)
        self.tpex = TpexClient(timeout=timeout, get_fn=get_fn, max_workers=workers, parallel=parallel, today=today)
        self.yahoo = YahooClient(timeout=timeout, get_fn=get_fn, today=today)
        self.xinggui = XingGuiClient(timeout=timeout, get_fn=get_fn, post_fn=post_fn, today=today)
        self.parallel = parallel

        self.financials = FallbackCoordinator(
            build_sources(
                self.config.financials_source_order,
                {
                    "finmind": self.finmind.fetch_financials,
                    "twse": self.twse.fetch_financials,
                    "tpex": self.tpex.fetch_financials,
                    "yahoo": self.yahoo.fetch_financials,
                    "xinggui": self.xinggui.fetch_financials,
                },
            ),
            label="financials",
        )
        self.prices = FallbackCoordinator(
            build_sources(
                self.config.price_source_order,
                {
                    "finmind": self.finmind.fetch_price,
                    "twse": self.twse.fetch_price,
                    "tpex": self.tpex.fetch_price,
                    "yahoo": self.yahoo.fetch_price,
                },
            ),
            label="price",
        )
        self.stock_cache = TTLCache(self.config.listed_stocks_ttl_seconds, clock=clock)

    def get_financials(self, stock_id: str) -> Dict[str, Any]:
        stock_id = _require_stock_id(stock_id)
        record = self.financials.fetch(stock_id)
        return record.to_dict()

    def get_price(self, stock_id: str) -> Dict[str, Any]:
        stock_id = _require_stock_id(stock_id)
        quote = self.prices.fetch(stock_id)
        return chart_payload(quote)

    def finmind_passthrough(
        self,
        dataset: str,
        data_id: Optional[str] = None,
        start_date: Optional[str] = None,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not dataset:
            raise InvalidRequest("Missing required parameter: dataset")
        payload = self.finmind.fetch_dataset(dataset, data_id=data_id, start_date=start_date, token=token)
        data = payload.get("data")
        result = dict(payload)
        result.update(
            {
                "success": True,
                "source": "finmind",
                "data_id": data_id,
                "dataset": dataset,
                "count": len(data) if isinstance(data, list) else 1,
            }
        )
        return result

    def twse_data(self, data_type: str, stock_id: Optional[str] = None) -> Any:
        if data_type == "financials":
            return self.twse.fetch_structured_financials(_require_stock_id(stock_id))
        try:
            return self.twse.fetch_dataset_group(data_type)
        except ValueError as exc:
            raise InvalidRequest("Invalid type") from exc

    def tpex_data(self, data_type: str, stock_id: Optional[str] = None) -> Any:
        if data_type == "financials":
            return self.tpex.fetch_structured_financials(_require_stock_id(stock_id))
        if data_type == "stocks":
            return self.tpex.fetch_stock_list()
        raise InvalidRequest("無效的請求類型")

    def xinggui_data(self, stock_id: str, data_type: str = "financials") -> Dict[str, Any]:
        stock_id = _require_stock_id(stock_id)
        if data_type not in XINGGUI_DATA_TYPES:
            raise InvalidRequest(f"不支持的數據類型: {data_type}")
        if data_type == "basic":
            return self.xinggui.fetch_basic_info(stock_id)
        if data_type == "price":
            return self.xinggui.fetch_price(stock_id).to_dict()
        return self.xinggui.fetch_financials(stock_id).to_dict()

    def listed_stocks(self) -> List[Dict[str, Any]]:
        return self.stock_cache.get_or_load(LISTED_STOCKS_KEY, self._load_listed_stocks)

    def _load_listed_stocks(self) -> List[Dict[str, Any]]:
        failures = []

        def guarded(name: str, fetch_fn: Callable[[], List[Dict[str, Any]]]) -> Callable[[], List[Dict[str, Any]]]:
            def run() -> List[Dict[str, Any]]:
                try:
                    return fetch_fn()
                except SourceUnavailable as exc:
                    failures.append((name, exc.reason))
                    return []

            return run

        joined = fetch_parallel(
            {
                "twse": guarded("twse", self.twse.fetch_stock_list),
                "tpex": guarded("tpex", self.tpex.fetch_stock_list),
            },
            max_workers=2,
            parallel=self.parallel,
        )
        merged: List[Dict[str, Any]] = []
        seen = set()
        for name in ("twse", "tpex"):
            for stock in joined.get(name) or []:
                if stock["stock_id"] and stock["stock_id"] not in seen:
                    seen.add(stock["stock_id"])
                    merged.append(stock)
        if not merged:
            raise NoDataAvailable(failures or [("twse", "無資料"), ("tpex", "無資料")], all_empty=not failures)
        log_step("stocks:loaded", {"count": len(merged), "failed": [name for name, _ in failures]})
        return merged


def chart_payload(quote: PriceQuote) -> Dict[str, Any]:
    """Wrap a quote in the Yahoo chart layout the front-end charts consume."""
    history = quote.historical_data
    return {
        "chart": {
            "result": [
                {
                    "meta": {
                        "symbol": quote.stock_id,
                        "regularMarketPrice": quote.price,
                        "previousClose": quote.previous_close,
                        "regularMarketVolume": quote.volume,
                        "regularMarketTime": iso_to_timestamp(quote.date),
                    },
                    "timestamp": [iso_to_timestamp(row.get("date")) for row in history],
                    "indicators": {
                        "quote": [
                            {
                                "close": [row.get("close") for row in history],
                                "volume": [row.get("volume") or 0 for row in history],
                            }
                        ]
                    },
                }
            ]
        },
        "unified": quote.to_dict(),
        "source": quote.source,
    }


def _require_stock_id(stock_id: Optional[str]) -> str:
    stock_id = (stock_id or "").strip()
    if not stock_id:
        raise InvalidRequest("Missing stock ID")
    return stock_id
