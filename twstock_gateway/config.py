import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv


FINANCIAL_SOURCES = ("finmind", "twse", "tpex", "yahoo", "xinggui")
PRICE_SOURCES = ("finmind", "twse", "tpex", "yahoo")


@dataclass
class AppConfig:
    finmind_token: str
    upstream_timeout_seconds: int
    ai_timeout_seconds: int
    deepseek_max_retries: int
    gpt_max_retries: int
    retry_backoff_seconds: float
    listed_stocks_ttl_seconds: int
    parallel_max_workers: int
    log_level: str
    debug: bool
    financials_source_order: List[str] = field(default_factory=lambda: list(FINANCIAL_SOURCES))
    price_source_order: List[str] = field(default_factory=lambda: list(PRICE_SOURCES))


def load_config() -> AppConfig:
    load_dotenv()

    return AppConfig(
        finmind_token=os.getenv("FINMIND_TOKEN", "").strip(),
        upstream_timeout_seconds=_int_env("UPSTREAM_TIMEOUT_SECONDS", 15, low=1, high=60),
        ai_timeout_seconds=_int_env("AI_TIMEOUT_SECONDS", 30, low=1, high=120),
        deepseek_max_retries=_int_env("DEEPSEEK_MAX_RETRIES", 3, low=0, high=10),
        gpt_max_retries=_int_env("GPT_MAX_RETRIES", 2, low=0, high=10),
        retry_backoff_seconds=_float_env("RETRY_BACKOFF_SECONDS", 2.0),
        listed_stocks_ttl_seconds=_int_env("LISTED_STOCKS_TTL_SECONDS", 600, low=0, high=86400),
        parallel_max_workers=_int_env("PARALLEL_MAX_WORKERS", 4, low=1, high=16),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        debug=os.getenv("DEBUG", "false").lower() == "true",
        financials_source_order=parse_source_order(
            os.getenv("FINANCIALS_SOURCE_ORDER", ""), FINANCIAL_SOURCES
        ),
        price_source_order=parse_source_order(os.getenv("PRICE_SOURCE_ORDER", ""), PRICE_SOURCES),
    )


def parse_source_order(raw: str, allowed) -> List[str]:
    names = [part.strip().lower() for part in (raw or "").split(",") if part.strip()]
    order: List[str] = []
    for name in names:
        if name in allowed and name not in order:
            order.append(name)
    return order or list(allowed)


def _int_env(name: str, default: int, low: int, high: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return max(low, min(value, high))


def _float_env(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        value = default
    return max(0.0, value)
