import logging
from typing import Any, Callable, Dict, Optional

import requests

from .errors import SourceUnavailable

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json, text/javascript, */*; q=0.01",
}


def get_json(
    source: str,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    timeout: int = 15,
    get_fn: Optional[Callable[..., Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Any:
    resp = _send(source, get_fn or requests.get, url, timeout, params=params, headers=headers or DEFAULT_HEADERS)
    try:
        return resp.json()
    except ValueError as exc:
        raise SourceUnavailable(source, "回應不是有效的JSON") from exc


def post_form_text(
    source: str,
    url: str,
    data: Dict[str, Any],
    timeout: int = 15,
    post_fn: Optional[Callable[..., Any]] = None,
) -> str:
    headers = dict(DEFAULT_HEADERS)
    headers["Content-Type"] = "application/x-www-form-urlencoded"
    resp = _send(source, post_fn or requests.post, url, timeout, data=data, headers=headers)
    encoding = getattr(resp, "encoding", None)
    if not encoding or encoding.lower() == "iso-8859-1":
        resp.encoding = "utf-8"
    return resp.text


def _send(source: str, send_fn: Callable[..., Any], url: str, timeout: int, **kwargs: Any) -> Any:
    try:
        resp = send_fn(url, timeout=timeout, **kwargs)
    except requests.exceptions.Timeout as exc:
        logger.warning("%s request timed out: %s", source, url)
        raise SourceUnavailable(source, f"請求超時 ({timeout}s)", timeout=True) from exc
    except requests.RequestException as exc:
        logger.warning("%s request failed: %s", source, exc)
        raise SourceUnavailable(source, f"網絡錯誤: {exc}") from exc

    status = int(getattr(resp, "status_code", 0) or 0)
    if not 200 <= status < 300:
        raise SourceUnavailable(source, f"HTTP {status}", upstream_status=status)
    return resp
