import logging
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

import requests

from .errors import AuthError, ProviderError, RateLimited
from .run_logger import log_step

logger = logging.getLogger(__name__)

PROVIDERS: Dict[str, Dict[str, Any]] = {
    "deepseek": {
        "label": "DeepSeek",
        "wire": "openai",
        "base_url": "https://api.deepseek.com",
        "models": ["deepseek-chat"],
    },
    "gpt": {
        "label": "OpenAI",
        "wire": "openai",
        "base_url": "https://api.openai.com",
        "models": ["gpt-3.5-turbo"],
    },
    "grok": {
        "label": "Grok",
        "wire": "openai",
        "base_url": "https://api.x.ai",
        "models": ["grok-beta"],
    },
    "claude": {
        "label": "Claude",
        "wire": "anthropic",
        "base_url": "https://api.anthropic.com",
        "models": ["claude-3-sonnet-20240229"],
    },
    "gemini": {
        "label": "Gemini",
        "wire": "gemini",
        "base_url": "https://generativelanguage.googleapis.com",
        "models": ["gemini-1.5-pro", "gemini-1.5-flash", "gemini-pro"],
    },
}

DEFAULT_MAX_RETRIES = {"deepseek": 3, "gpt": 2}
ANTHROPIC_VERSION = "2023-06-01"
TEMPERATURE = 0.7
MAX_TOKENS = 2000


class LLMClient:
    def __init__(
        self,
        provider: str,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 30,
        max_retries: Optional[int] = None,
        backoff_seconds: float = 2.0,
        post_fn: Optional[Callable[..., Any]] = None,
        get_fn: Optional[Callable[..., Any]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.provider = (provider or "").lower().strip()
        if self.provider not in PROVIDERS:
            raise ValueError(f"不支持的AI平台: {provider}")
        settings = PROVIDERS[self.provider]
        self.label = settings["label"]
        self.wire = settings["wire"]
        self.models: List[str] = [model] if model else list(settings["models"])
        self.model = self.models[0]
        self.api_key = api_key
        self.base_url = _normalize_base_url(base_url or settings["base_url"])
        self.timeout = timeout
        if max_retries is None:
            max_retries = DEFAULT_MAX_RETRIES.get(self.provider, 0)
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = backoff_seconds
        self._post = post_fn or requests.post
        self._get = get_fn or requests.get
        self._sleep = sleep_fn or time.sleep

    def complete(self, prompt: str) -> str:
        if self.wire == "gemini":
            return self._gemini_generate(prompt)
        if self.wire == "anthropic":
            return self._anthropic_message(prompt)
        return self._openai_chat_completion(prompt)

    def check_models(self) -> Dict[str, Any]:
        if self.wire == "gemini":
            url = f"{self.base_url}/v1beta/models"
        else:
            url = f"{self.base_url}/v1/models"
        data = self._request(self._get, url, self._headers())
        models = data.get("data") if isinstance(data, dict) else None
        if models is None and isinstance(data, dict):
            models = data.get("models")
        return {
            "success": True,
            "platform": self.provider,
            "message": f"{self.label} API連線正常",
            "models": len(models) if isinstance(models, list) else "未知",
        }

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.wire == "anthropic":
            headers["x-api-key"] = self.api_key
            headers["anthropic-version"] = ANTHROPIC_VERSION
        elif self.wire == "gemini":
            headers["x-goog-api-key"] = self.api_key
        else:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _openai_chat_completion(self, prompt: str) -> str:
        url = f"{self.base_url}/v1/chat/completions"
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": TEMPERATURE,
            "max_tokens": MAX_TOKENS,
            "stream": False,
        }
        data = self._post_with_retry(url, self._headers(), payload)
        return self._extract(data, lambda d: d["choices"][0]["message"]["content"])

    def _anthropic_message(self, prompt: str) -> str:
        url = f"{self.base_url}/v1/messages"
        payload = {
            "model": self.model,
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = self._post_with_retry(url, self._headers(), payload)
        return self._extract(data, lambda d: d["content"][0]["text"])

    def _gemini_generate(self, prompt: str) -> str:
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": TEMPERATURE,
                "maxOutputTokens": MAX_TOKENS,
                "topP": 0.8,
                "topK": 40,
            },
        }
        last_err: Optional[ProviderError] = None
        for model in self.models:
            name = model.split("/", 1)[1] if model.startswith("models/") else model
            url = f"{self.base_url}/v1beta/models/{name}:generateContent"
            try:
                data = self._post_with_retry(url, self._headers(), payload)
            except ProviderError as exc:
                if exc.upstream_status != 404:
                    raise
                logger.info("gemini model %s not found, trying next", name)
                last_err = exc
                continue
            self.model = model
            return self._extract(data, lambda d: d["candidates"][0]["content"]["parts"][0]["text"])
        raise ProviderError(
            self.provider,
            f"所有Gemini模型嘗試失敗。最後錯誤: {last_err.message if last_err else '未知錯誤'}",
            upstream_status=404,
        )

    def _extract(self, data: Dict[str, Any], pick: Callable[[Dict[str, Any]], Any]) -> str:
        try:
            content = pick(data)
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(self.provider, f"{self.label} API返回數據格式錯誤：缺少必要字段") from exc
        if not isinstance(content, str) or not content.strip():
            raise ProviderError(self.provider, f"{self.label} API返回空內容")
        return content

    def _post_with_retry(self, url: str, headers: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        last_err: Optional[ProviderError] = None
        for attempt in range(self.max_retries + 1):
            if attempt:
                delay = self.backoff_seconds * attempt
                log_step(
                    "ai:retry",
                    {"platform": self.provider, "attempt": attempt, "delay": delay, "error": last_err.message},
                )
                self._sleep(delay)
            try:
                return self._request(self._post, url, headers, json=payload)
            except ProviderError as exc:
                if not exc.retryable:
                    raise
                last_err = exc
        logger.warning("%s request failed after %d attempts", self.label, self.max_retries + 1)
        raise last_err

    def _request(self, send_fn: Callable[..., Any], url: str, headers: Dict[str, Any], **kwargs: Any) -> Any:
        try:
            resp = send_fn(url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as exc:
            raise ProviderError(self.provider, f"{self.label} API請求超時", timeout=True) from exc
        except requests.exceptions.ConnectionError as exc:
            raise ProviderError(self.provider, "網絡連線失敗", connection_error=True) from exc
        except requests.RequestException as exc:
            raise ProviderError(self.provider, f"{self.label} 請求失敗: {exc}") from exc

        status = resp.status_code
        if status in (401, 403):
            raise AuthError(self.provider, "API Key 無效或已過期", upstream_status=status)
        if status == 429:
            raise RateLimited(self.provider, "API 配額已用盡或請求過於頻繁", upstream_status=status)
        if not 200 <= status < 300:
            raise ProviderError(
                self.provider,
                f"{self.label} API錯誤: {status} - {_error_text(resp)}",
                upstream_status=status,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(self.provider, f"{self.label}返回了非JSON響應") from exc


def _error_text(resp: Any) -> str:
    text = getattr(resp, "text", "") or ""
    return str(text)[:200]


def _normalize_base_url(base_url: str) -> str:
    """Accept root URL, /v1 URL, or full chat completions endpoint and normalize."""
    raw = (base_url or "").strip()
    if not raw:
        return ""

    parsed = urlparse(raw)
    if not parsed.scheme or not parsed.netloc:
        return raw.rstrip("/")

    path = parsed.path.rstrip("/")
    lowered = path.lower()
    chat_suffix = "/chat/completions"
    v1_suffix = "/v1"

    if lowered.endswith(chat_suffix):
        path = path[: -len(chat_suffix)]
        lowered = path.lower()
    if lowered.endswith(v1_suffix):
        path = path[: -len(v1_suffix)]

    normalized = parsed._replace(path=path, params="", query="", fragment="")
    return urlunparse(normalized).rstrip("/")
