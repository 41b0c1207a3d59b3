from datetime import date

import pytest
import requests

from twstock_gateway.errors import SourceUnavailable
from twstock_gateway.finmind import FinMindClient
from twstock_gateway.tpex import TpexClient
from twstock_gateway.twse import TwseClient
from twstock_gateway.xinggui import XingGuiClient
from twstock_gateway.yahoo import YahooClient
from tests.helpers.fake_http import FakeResponse, RoutedGet


def _today():
    return date(2024, 5, 31)


def test_finmind_financials_from_statements_dataset():
    rows = [
        {"date": "2024-03-31", "type": "EPS", "value": 8.7},
        {"date": "2024-03-31", "type": "Revenue", "value": 592644},
    ]
    get = RoutedGet({"finmindtrade": {"msg": "success", "status": 200, "data": rows}})
    record = FinMindClient(token="tok", get_fn=get).fetch_financials("2330")

    assert record.eps == 8.7
    assert record.revenue == 592644
    params = get.calls[0]["params"]
    assert params == {"dataset": "TaiwanStockFinancialStatements", "data_id": "2330", "token": "tok"}


def test_finmind_business_error_counts_as_empty():
    get = RoutedGet({"finmindtrade": {"msg": "Your level is register", "status": 402, "data": []}})
    with pytest.raises(SourceUnavailable) as exc_info:
        FinMindClient(get_fn=get).fetch_financials("2330")
    assert exc_info.value.empty is True
    assert "Your level is register" in exc_info.value.reason


def test_finmind_price_queries_last_thirty_days():
    rows = [{"date": "2024-05-30", "close": 850, "spread": -5, "Trading_Volume": 10}]
    get = RoutedGet({"finmindtrade": {"msg": "success", "data": rows}})
    quote = FinMindClient(get_fn=get, today=_today).fetch_price("2330")

    assert quote.price == 850
    assert get.calls[0]["params"]["start_date"] == "2024-05-01"
    assert get.calls[0]["params"]["dataset"] == "TaiwanStockPrice"


def test_upstream_timeout_becomes_source_unavailable():
    get = RoutedGet({"finmindtrade": requests.exceptions.Timeout("slow")})
    with pytest.raises(SourceUnavailable) as exc_info:
        FinMindClient(get_fn=get).fetch_price("2330")
    assert exc_info.value.timeout is True


def test_twse_structured_financials_joins_income_and_balance():
    get = RoutedGet(
        {
            "t187ap06_L_ci": [
                {"公司代號": "2330", "年度": "113", "季別": "1", "基本每股盈餘（元）": "8.70", "本期淨利（淨損）": "100"},
                {"公司代號": "2317", "年度": "113", "季別": "1", "基本每股盈餘（元）": "2.10"},
            ],
            "t187ap07_L_ci": [{"公司代號": "2330", "年度": "113", "季別": "1", "權益總額": "1000"}],
        }
    )
    client = TwseClient(get_fn=get, parallel=False)
    record = client.fetch_financials("2330")

    assert record.eps == 8.7
    assert record.roe == 10.0
    assert record.source == "twse"
    assert any("t187ap17_L" in url for url in get.urls())


def test_twse_financials_without_rows_is_empty():
    client = TwseClient(get_fn=RoutedGet({"opendata": []}), parallel=False)
    with pytest.raises(SourceUnavailable) as exc_info:
        client.fetch_financials("2330")
    assert exc_info.value.empty is True


def test_twse_financials_outage_is_not_reported_as_empty():
    client = TwseClient(get_fn=RoutedGet({"opendata": requests.exceptions.ConnectionError("down")}), parallel=False)
    with pytest.raises(SourceUnavailable) as exc_info:
        client.fetch_financials("2330")
    assert exc_info.value.empty is False
    assert exc_info.value.source == "twse"
    assert "down" in exc_info.value.reason


def test_twse_revenue_rows_alone_do_not_hide_failed_statements():
    get = RoutedGet(
        {
            "t187ap05_L": [{"公司代號": "2330", "資料年月": "11304", "營業收入-去年同月增減(%)": "59.6"}],
            "opendata": requests.exceptions.ConnectionError("down"),
        }
    )
    with pytest.raises(SourceUnavailable) as exc_info:
        TwseClient(get_fn=get, parallel=False).fetch_financials("2330")
    assert exc_info.value.empty is False


def test_tpex_financials_outage_is_not_reported_as_empty():
    client = TpexClient(get_fn=RoutedGet({"tpex_openapi": FakeResponse(status_code=503)}), parallel=False, today=_today)
    with pytest.raises(SourceUnavailable) as exc_info:
        client.fetch_financials("6488")
    assert exc_info.value.empty is False
    assert exc_info.value.upstream_status == 503


def test_twse_dataset_group_filters_rows_without_company_code():
    get = RoutedGet({"t187ap03_L": [{"公司代號": "2330", "公司簡稱": "台積電"}, {"其他": "x"}]})
    client = TwseClient(get_fn=get, parallel=False)
    assert client.fetch_dataset_group("stocks") == [{"公司代號": "2330", "公司簡稱": "台積電"}]
    with pytest.raises(ValueError):
        client.fetch_dataset_group("weekly")


def test_twse_price_from_realtime_quote():
    get = RoutedGet({"getStockInfo": {"msgArray": [{"z": "805", "y": "800", "v": "3000", "d": "20240502"}]}})
    quote = TwseClient(get_fn=get).fetch_price("2330")
    assert quote.price == 805
    assert get.calls[0]["params"] == {"ex_ch": "tse_2330.tw|otc_2330.tw"}


def test_twse_price_empty_msg_array():
    get = RoutedGet({"getStockInfo": {"msgArray": []}})
    with pytest.raises(SourceUnavailable) as exc_info:
        TwseClient(get_fn=get).fetch_price("2330")
    assert exc_info.value.empty is True


def test_tpex_queries_from_previous_year_and_builds_stock_list():
    get = RoutedGet(
        {
            "stkfinstatements": [{"公司代號": "6488", "年度": "113", "季別": "1", "基本每股盈餘": "3.1"}],
            "stkbasicinfo": [{"公司代號": "6488", "公司名稱": "環球晶", "產業別": ""}],
        }
    )
    client = TpexClient(get_fn=get, parallel=False, today=_today)
    record = client.fetch_financials("6488")
    assert record.eps == 3.1
    assert get.calls[0]["params"] == {"stkno": "6488", "startyy": 2023}

    stocks = client.fetch_stock_list()
    assert stocks == [
        {
            "stock_id": "6488",
            "stock_name": "環球晶",
            "industry_category": "興櫃其他",
            "market_type": "TPEx",
            "_source": "TPEx",
        }
    ]


def test_tpex_price_from_daily_trading_info():
    get = RoutedGet({"st43_result": {"aaData": [["113/05/02", "1,200", "45.5", "0.5", "1.11"]]}})
    quote = TpexClient(get_fn=get).fetch_price("6488")
    assert quote.price == 45.5
    assert quote.source == "tpex"


def test_yahoo_price_tries_otc_suffix_after_listed():
    chart = {
        "chart": {
            "result": [
                {
                    "meta": {"regularMarketPrice": 45.5, "previousClose": 45.0, "regularMarketTime": 1714608000},
                    "timestamp": [1714608000],
                    "indicators": {"quote": [{"close": [45.5], "volume": [100]}]},
                }
            ]
        }
    }
    get = RoutedGet({"chart/6488.TWO": chart})
    quote = YahooClient(get_fn=get).fetch_price("6488")

    assert quote.price == 45.5
    assert get.urls()[0].endswith("chart/6488.TW")
    assert get.urls()[1].endswith("chart/6488.TWO")


def test_yahoo_price_all_symbols_failing():
    with pytest.raises(SourceUnavailable) as exc_info:
        YahooClient(get_fn=RoutedGet({})).fetch_price("0000")
    assert "Yahoo所有格式都失敗" in exc_info.value.reason


def test_yahoo_financials_requires_quote_summary_result():
    get = RoutedGet({"quoteSummary": {"quoteSummary": {"result": None, "error": {"code": "Not Found"}}}})
    with pytest.raises(SourceUnavailable) as exc_info:
        YahooClient(get_fn=get).fetch_financials("0000")
    assert exc_info.value.empty is True


def test_yahoo_financials_try_otc_suffix_after_listed():
    summary = {
        "quoteSummary": {
            "result": [
                {
                    "financialData": {"returnOnEquity": {"raw": 0.12}, "currentPrice": {"raw": 45.5}},
                    "defaultKeyStatistics": {"trailingEps": {"raw": 3.1}},
                }
            ]
        }
    }
    get = RoutedGet({"quoteSummary/6488.TWO": summary})
    record = YahooClient(get_fn=get, today=_today).fetch_financials("6488")

    assert record.eps == 3.1
    assert record.source == "yahoo"
    assert get.urls()[0].endswith("quoteSummary/6488.TW")
    assert get.urls()[1].endswith("quoteSummary/6488.TWO")


def test_xinggui_financials_parse_mops_html():
    posted = {}

    def fake_post(url, **kwargs):
        posted["url"] = url
        posted["data"] = kwargs["data"]
        return FakeResponse(text="<table><tr><td>基本每股盈餘</td><td>1.25</td></tr></table>")

    client = XingGuiClient(post_fn=fake_post, today=_today)
    record = client.fetch_financials("7777")

    assert record.eps == 1.25
    assert record.date == "2024-05-31"
    assert posted["data"]["co_id"] == "7777"
    assert posted["data"]["TYPEK"] == "all"


def test_xinggui_financials_without_figures_is_empty():
    client = XingGuiClient(post_fn=lambda url, **kwargs: FakeResponse(text="<p>查無資料</p>"))
    with pytest.raises(SourceUnavailable) as exc_info:
        client.fetch_financials("7777")
    assert exc_info.value.empty is True


def test_xinggui_basic_info_defaults_unknown_fields():
    get = RoutedGet({"raising_result": {"aaData": [["7777", "新創公司"]]}})
    info = XingGuiClient(get_fn=get).fetch_basic_info("7777")
    assert info == {
        "stockId": "7777",
        "name": "新創公司",
        "industry": "未知",
        "listingDate": "未知",
        "source": "tpex_xinggui",
    }
