from typing import Any, Dict, List, Optional, Tuple

RETRYABLE_STATUS = {502, 503, 504}


class GatewayError(Exception):
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class InvalidRequest(GatewayError):
    http_status = 400


class SourceUnavailable(GatewayError):
    """One upstream source failed; the coordinator moves on to the next one."""

    http_status = 500

    def __init__(
        self,
        source: str,
        reason: str,
        upstream_status: Optional[int] = None,
        empty: bool = False,
        timeout: bool = False,
    ) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason
        self.upstream_status = upstream_status
        self.empty = empty
        self.timeout = timeout

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "source": self.source}


class NoDataAvailable(GatewayError):
    def __init__(self, attempts: List[Tuple[str, str]], all_empty: bool = False, message: str = "") -> None:
        names = ", ".join(name for name, _ in attempts) or "none"
        super().__init__(message or f"所有數據源都失敗 (已嘗試: {names})")
        self.attempts = list(attempts)
        self.all_empty = all_empty

    @property
    def http_status(self) -> int:
        return 404 if self.all_empty else 500

    @property
    def attempted_sources(self) -> List[str]:
        return [name for name, _ in self.attempts]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "attempts": [{"source": name, "reason": reason} for name, reason in self.attempts],
        }


class ProviderError(GatewayError):
    http_status = 500

    def __init__(
        self,
        provider: str,
        message: str,
        upstream_status: Optional[int] = None,
        timeout: bool = False,
        connection_error: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.upstream_status = upstream_status
        self.timeout = timeout
        self.connection_error = connection_error

    @property
    def retryable(self) -> bool:
        return bool(self.timeout or self.connection_error or self.upstream_status in RETRYABLE_STATUS)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "platform": self.provider}


class AuthError(ProviderError):
    http_status = 401


class RateLimited(ProviderError):
    http_status = 429

