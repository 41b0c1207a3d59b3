import json
from typing import Any, Dict, List, Optional


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload, ensure_ascii=False)
        self.encoding = "utf-8"

    def json(self) -> Any:
        if self._payload is None:
            return json.loads(self.text)
        return self._payload


class RoutedGet:
    """Answers each call with the first route whose key is a substring of the URL."""

    def __init__(self, routes: Dict[str, Any]) -> None:
        self.routes = routes
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, url: str, **kwargs: Any) -> Any:
        self.calls.append({"url": url, **kwargs})
        for key, answer in self.routes.items():
            if key in url:
                if isinstance(answer, Exception):
                    raise answer
                if callable(answer):
                    return answer(url, **kwargs)
                if isinstance(answer, FakeResponse):
                    return answer
                return FakeResponse(payload=answer)
        return FakeResponse(status_code=404, payload={"error": "not found"})

    def urls(self) -> List[str]:
        return [call["url"] for call in self.calls]
