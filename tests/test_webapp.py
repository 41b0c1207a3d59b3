from datetime import date

from fastapi.testclient import TestClient

from twstock_gateway.errors import AuthError, NoDataAvailable
from twstock_gateway.services import MarketDataService
from twstock_gateway.web_app import create_app
from tests.helpers.factories import make_config
from tests.helpers.fake_http import FakeResponse, RoutedGet


ANALYSIS_REPLY = """【正面因素】
1. 先進製程需求強勁

【負面因素】
1. 匯率波動

【最終評分】4

【投資建議】逢低布局
"""


class FakeLLM:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.reply

    def check_models(self):
        return {"success": True, "platform": "deepseek", "message": "ok", "models": 3}


def _client(routes=None, llm=None, service=None):
    config = make_config()
    service = service or MarketDataService(
        config,
        get_fn=RoutedGet(routes or {}),
        post_fn=lambda url, **kwargs: FakeResponse(text="<p>查無資料</p>"),
        parallel=False,
        today=lambda: date(2024, 5, 31),
    )
    built = []

    def llm_factory(platform, api_key):
        if platform not in ("deepseek", "gpt", "claude", "gemini", "grok"):
            raise ValueError(f"不支持的AI平台: {platform}")
        built.append((platform, api_key))
        return llm or FakeLLM(ANALYSIS_REPLY)

    client = TestClient(create_app(config=config, service=service, llm_factory=llm_factory))
    return client, built


def test_health_carries_cors_headers():
    client, _ = _client()
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "OPTIONS" in resp.headers["access-control-allow-methods"]


def test_preflight_returns_empty_ok():
    client, _ = _client()
    resp = client.options("/api/ai-analysis")
    assert resp.status_code == 200
    assert resp.json() == {}
    assert resp.headers["access-control-allow-headers"] == "Content-Type, Authorization"


def test_wrong_method_is_405_with_cors():
    client, _ = _client()
    resp = client.post("/api/financials")
    assert resp.status_code == 405
    assert resp.json() == {"error": "不允許的請求方法"}
    assert resp.headers["access-control-allow-origin"] == "*"


def test_financials_missing_id_is_400():
    client, _ = _client()
    resp = client.get("/api/financials")
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing stock ID"}


def test_financials_success_reports_source():
    rows = [{"date": "2024-03-31", "type": "EPS", "value": 8.7}]
    client, _ = _client({"finmindtrade": {"msg": "success", "data": rows}})
    resp = client.get("/api/financials", params={"id": "2330"})
    assert resp.status_code == 200
    assert resp.json()["source"] == "finmind"
    assert resp.json()["eps"] == 8.7


def test_financials_all_empty_is_404_with_attempts():
    client, _ = _client(
        {
            "finmindtrade": {"msg": "success", "data": []},
            "opendata": [],
            "tpex_openapi": [],
            "quoteSummary": {"quoteSummary": {"result": None}},
        }
    )
    resp = client.get("/api/financials", params={"id": "0000"})
    assert resp.status_code == 404
    body = resp.json()
    assert [attempt["source"] for attempt in body["attempts"]] == ["finmind", "twse", "tpex", "yahoo", "xinggui"]
    assert resp.headers["access-control-allow-origin"] == "*"


def test_price_failure_is_500_when_a_source_errored():
    class BrokenService:
        def get_price(self, stock_id):
            raise NoDataAvailable([("finmind", "HTTP 502"), ("yahoo", "無數據")])

    client, _ = _client(service=BrokenService())
    resp = client.get("/api/price", params={"id": "2330"})
    assert resp.status_code == 500
    assert "所有數據源都失敗" in resp.json()["error"]


def test_finmind_passthrough_requires_dataset():
    client, _ = _client()
    resp = client.get("/api/finmind")
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_finmind_passthrough_maps_upstream_status_and_empty():
    client, _ = _client({"finmindtrade": FakeResponse(status_code=402, text="limit")})
    resp = client.get("/api/finmind", params={"dataset": "TaiwanStockPrice", "data_id": "2330"})
    assert resp.status_code == 402
    assert resp.json()["error"] == "FinMind API Error: 402"

    client, _ = _client({"finmindtrade": {"msg": "success", "data": []}})
    resp = client.get("/api/finmind", params={"dataset": "TaiwanStockPrice", "data_id": "2330"})
    assert resp.status_code == 404
    assert resp.json()["emptyData"] is True


def test_twse_invalid_type_is_400():
    client, _ = _client()
    resp = client.get("/api/twse", params={"type": "weekly"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid type"}


def test_stocks_merges_markets():
    client, _ = _client(
        {
            "t187ap03_L": [{"公司代號": "2330", "公司簡稱": "台積電"}],
            "stkbasicinfo": [{"公司代號": "6488", "公司名稱": "環球晶"}],
        }
    )
    resp = client.get("/api/stocks")
    assert resp.status_code == 200
    assert [stock["stock_id"] for stock in resp.json()] == ["2330", "6488"]


def test_ai_analysis_returns_parsed_result():
    llm = FakeLLM(ANALYSIS_REPLY)
    client, built = _client(llm=llm)
    resp = client.post(
        "/api/ai-analysis",
        json={"stockId": 2330, "stockName": "台積電", "apiKey": "key", "analysisType": "news"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["score"] == 4
    assert body["structured"] is True
    assert body["platform"] == "deepseek"
    assert body["timestamp"]
    assert built == [("deepseek", "key")]
    assert "2330 台積電" in llm.prompts[0]


def test_ai_analysis_missing_fields_is_400():
    client, built = _client()
    resp = client.post("/api/ai-analysis", json={"stockId": "2330"})
    assert resp.status_code == 400
    assert built == []


def test_ai_analysis_rejects_unknown_type_and_platform():
    client, _ = _client()
    resp = client.post("/api/ai-analysis", json={"stockId": "2330", "apiKey": "k", "analysisType": "macro"})
    assert resp.status_code == 400

    resp = client.post("/api/ai-analysis", json={"stockId": "2330", "apiKey": "k", "platform": "llama"})
    assert resp.status_code == 400
    assert "不支持的AI平台" in resp.json()["error"]


def test_ai_analysis_malformed_json_is_400():
    client, _ = _client()
    resp = client.post(
        "/api/ai-analysis",
        content="{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "無效的JSON格式"}


def test_ai_analysis_auth_error_is_401():
    llm = FakeLLM(error=AuthError("deepseek", "API Key 無效"))
    client, _ = _client(llm=llm)
    resp = client.post("/api/ai-analysis", json={"stockId": "2330", "apiKey": "bad"})
    assert resp.status_code == 401
    assert resp.json()["platform"] == "deepseek"


def test_ai_check_requires_key_and_reports_models():
    client, _ = _client()
    assert client.post("/api/ai-check", json={}).status_code == 400

    resp = client.post("/api/ai-check", json={"apiKey": "key"})
    assert resp.status_code == 200
    assert resp.json()["models"] == 3
