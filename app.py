import json

import streamlit as st

from twstock_gateway.analysis_parser import parse_analysis
from twstock_gateway.config import load_config
from twstock_gateway.errors import GatewayError
from twstock_gateway.llm_client import PROVIDERS, LLMClient
from twstock_gateway.prompts import build_prompt
from twstock_gateway.services import MarketDataService


st.set_page_config(page_title="台股數據閘道", layout="wide")

st.title("台股財務數據與 AI 分析主控台")

config = load_config()

with st.sidebar:
    st.header("查詢設定")
    stock_id = st.text_input("股票代號", value="2330")
    stock_name = st.text_input("股票名稱", value="台積電")
    st.caption("財報順序: " + ", ".join(config.financials_source_order))
    st.caption("股價順序: " + ", ".join(config.price_source_order))
    st.divider()
    platform = st.selectbox("AI 平台", list(PROVIDERS.keys()))
    api_key = st.text_input("API Key", type="password")
    analysis_type = st.radio("分析類型", ["news", "risk"], format_func=lambda t: "消息面" if t == "news" else "風險面")


@st.cache_resource
def get_service() -> MarketDataService:
    return MarketDataService(config)


service = get_service()
data_tab, ai_tab = st.tabs(["市場數據", "AI 分析"])

with data_tab:
    col_fin, col_price = st.columns(2)
    if col_fin.button("查詢財報"):
        try:
            with st.spinner("正在查詢財報..."):
                record = service.get_financials(stock_id)
            col_fin.success(f"數據來源: {record['source']}")
            col_fin.json(record)
        except GatewayError as exc:
            col_fin.error(exc.message)
            col_fin.json(exc.to_dict())

    if col_price.button("查詢股價"):
        try:
            with st.spinner("正在查詢股價..."):
                payload = service.get_price(stock_id)
            unified = payload["unified"]
            col_price.metric("收盤價", unified["price"], unified["change"])
            history = unified["historicalData"]
            if history:
                col_price.line_chart({row["date"]: row["close"] for row in history})
            col_price.caption(f"數據來源: {payload['source']}")
        except GatewayError as exc:
            col_price.error(exc.message)

with ai_tab:
    if st.button("執行分析"):
        if not api_key:
            st.error("請先輸入 API Key。")
        else:
            llm = LLMClient(
                provider=platform,
                api_key=api_key,
                timeout=config.ai_timeout_seconds,
                backoff_seconds=config.retry_backoff_seconds,
            )
            try:
                with st.spinner("AI 分析中，請稍候..."):
                    content = llm.complete(build_prompt(stock_id, stock_name, analysis_type))
            except GatewayError as exc:
                st.error(exc.message)
            else:
                result = parse_analysis(content, analysis_type, stock_name)
                st.metric("評分", result.score)
                st.write(result.comment)
                st.markdown(result.content)
                with st.expander("原始回應"):
                    st.text(result.raw_content or "")
                st.download_button(
                    "下載分析結果 JSON",
                    data=json.dumps(result.to_dict(), ensure_ascii=False, indent=2),
                    file_name=f"analysis_{stock_id}_{analysis_type}.json",
                )
