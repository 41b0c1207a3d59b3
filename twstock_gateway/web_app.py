from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from starlette.exceptions import HTTPException as StarletteHTTPException

from .analysis_parser import parse_analysis
from .config import AppConfig, load_config
from .errors import GatewayError, InvalidRequest, SourceUnavailable
from .llm_client import LLMClient
from .prompts import ANALYSIS_TYPES, build_prompt
from .run_logger import configure_logging, log_step
from .services import MarketDataService

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    stockId: Optional[str] = None
    stockName: Optional[str] = ""
    apiKey: Optional[str] = None
    analysisType: Optional[str] = "news"
    platform: Optional[str] = "deepseek"


class CheckRequest(BaseModel):
    apiKey: Optional[str] = None
    platform: Optional[str] = "deepseek"


def create_app(
    config: Optional[AppConfig] = None,
    service: Optional[MarketDataService] = None,
    llm_factory: Optional[Callable[[str, str], Any]] = None,
) -> FastAPI:
    config = config or load_config()
    configure_logging(config.log_level)
    service = service or MarketDataService(config)
    app = FastAPI(title="TW Stock Gateway", debug=config.debug)

    if llm_factory is None:
        retries = {"deepseek": config.deepseek_max_retries, "gpt": config.gpt_max_retries}

        def llm_factory(platform: str, api_key: str):
            return LLMClient(
                provider=platform,
                api_key=api_key,
                timeout=config.ai_timeout_seconds,
                max_retries=retries.get(platform, 0),
                backoff_seconds=config.retry_backoff_seconds,
            )

    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            return JSONResponse({}, status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(GatewayError)
    async def gateway_error(_request: Request, exc: GatewayError):
        return JSONResponse(exc.to_dict(), status_code=exc.http_status)

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError):
        invalid_json = any(err.get("type") == "json_invalid" for err in exc.errors())
        message = "無效的JSON格式" if invalid_json else "請求參數格式錯誤"
        return JSONResponse({"error": message}, status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException):
        message = "不允許的請求方法" if exc.status_code == 405 else str(exc.detail)
        return JSONResponse({"error": message}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error(_request: Request, exc: Exception):
        return JSONResponse({"error": f"伺服器內部錯誤: {exc}"}, status_code=500, headers=CORS_HEADERS)

    @app.get("/api/health")
    def health():
        return {"status": "ok", "timestamp": _now_iso()}

    @app.get("/api/financials")
    def financials(id: Optional[str] = None):
        return service.get_financials(id)

    @app.get("/api/price")
    def price(id: Optional[str] = None):
        return service.get_price(id)

    @app.get("/api/finmind")
    def finmind(
        dataset: Optional[str] = None,
        data_id: Optional[str] = None,
        start_date: Optional[str] = None,
        token: Optional[str] = None,
    ):
        if not dataset:
            return JSONResponse(
                {"error": "Missing required parameter: dataset", "success": False},
                status_code=400,
            )
        try:
            return service.finmind_passthrough(dataset, data_id=data_id, start_date=start_date, token=token)
        except SourceUnavailable as exc:
            return _finmind_error(exc, dataset, data_id)

    @app.get("/api/twse")
    def twse(type: Optional[str] = None, stock_id: Optional[str] = None):
        return service.twse_data(type or "", stock_id)

    @app.get("/api/tpex")
    def tpex(type: Optional[str] = None, stock_id: Optional[str] = None):
        return service.tpex_data(type or "", stock_id)

    @app.get("/api/xinggui")
    def xinggui(stockId: Optional[str] = None, dataType: str = "financials"):
        return service.xinggui_data(stockId, dataType)

    @app.get("/api/stocks")
    def stocks():
        return service.listed_stocks()

    @app.post("/api/ai-analysis")
    def ai_analysis(payload: AnalysisRequest):
        stock_id = (payload.stockId or "").strip()
        api_key = (payload.apiKey or "").strip()
        platform = (payload.platform or "deepseek").strip().lower()
        analysis_type = (payload.analysisType or "news").strip().lower()
        stock_name = (payload.stockName or "").strip()
        if not stock_id or not api_key:
            raise InvalidRequest("缺少必要參數: stockId, apiKey")
        if analysis_type not in ANALYSIS_TYPES:
            raise InvalidRequest(f"不支持的分析類型: {analysis_type}")

        llm = _build_llm(llm_factory, platform, api_key)
        content = llm.complete(build_prompt(stock_id, stock_name, analysis_type))
        result = parse_analysis(content, analysis_type, stock_name)
        result.platform = platform
        result.timestamp = _now_iso()
        log_step(
            "ai:analysis",
            {
                "stock_id": stock_id,
                "platform": platform,
                "analysis_type": analysis_type,
                "score": result.score,
                "structured": result.structured,
            },
        )
        return result.to_dict()

    @app.post("/api/ai-check")
    def ai_check(payload: CheckRequest):
        api_key = (payload.apiKey or "").strip()
        if not api_key:
            raise InvalidRequest("缺少API Key")
        platform = (payload.platform or "deepseek").strip().lower()
        llm = _build_llm(llm_factory, platform, api_key)
        return llm.check_models()

    return app


def _build_llm(llm_factory: Callable[[str, str], Any], platform: str, api_key: str) -> Any:
    try:
        return llm_factory(platform, api_key)
    except ValueError as exc:
        raise InvalidRequest(str(exc)) from exc


def _finmind_error(exc: SourceUnavailable, dataset: str, data_id: Optional[str]) -> JSONResponse:
    body = {
        "error": exc.reason,
        "success": False,
        "source": "finmind",
        "data_id": data_id,
        "dataset": dataset,
    }
    if exc.upstream_status:
        status = exc.upstream_status
        body["error"] = f"FinMind API Error: {exc.upstream_status}"
    elif exc.timeout:
        status = 408
        body["error"] = "FinMind API請求超時"
    elif exc.empty:
        status = 404
        body["emptyData"] = True
    else:
        status = 500
        body["error"] = f"FinMind查詢失敗: {exc.reason}"
    return JSONResponse(body, status_code=status)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
