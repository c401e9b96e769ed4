#!filepath: src/canopticon_app/llm/errors.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional


class ErrorKind(str, Enum):
    UNKNOWN = "unknown"
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PARSE = "parse"
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True, slots=True)
class LLMErrorDetails:
    kind: ErrorKind
    model: Optional[str] = None
    status_code: Optional[int] = None
    retry_after_seconds: Optional[int] = None
    message: str = ""
    raw: Optional[str] = None

    @property
    def reason(self) -> str:
        return str(self.kind.value)


class LLMError(Exception):
    """Normalized model call failure."""

    def __init__(self, payload: str | LLMErrorDetails) -> None:
        if isinstance(payload, LLMErrorDetails):
            super().__init__(str(payload.message or payload.reason or "llm_error"))
            self._details = payload
        else:
            super().__init__(str(payload or "llm_error"))
            self._details = LLMErrorDetails(
                kind=ErrorKind.UNKNOWN, message=str(payload or "")
            )

    @property
    def details(self) -> LLMErrorDetails:
        return self._details

    @property
    def kind(self) -> ErrorKind:
        return self._details.kind

    @property
    def http_status(self) -> Optional[int]:
        return self._details.status_code

    @property
    def retryable(self) -> bool:
        return self._details.kind in {
            ErrorKind.NETWORK,
            ErrorKind.TIMEOUT,
            ErrorKind.RATE_LIMIT,
            ErrorKind.PROVIDER_UNAVAILABLE,
            ErrorKind.PARSE,
        }

    def describe(self) -> str:
        parts = [f"kind={self.kind.value}"]
        if self.http_status is not None:
            parts.append(f"status={self.http_status}")
        parts.append(f"err={self}")
        return ", ".join(parts)


def parse_retry_after_seconds(headers: Mapping[str, str]) -> Optional[int]:
    v = (headers.get("Retry-After") or headers.get("retry-after") or "").strip()
    if not v:
        return None
    try:
        return int(float(v))
    except ValueError:
        return None


def kind_from_status(status: int) -> ErrorKind:
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status in (400, 422):
        return ErrorKind.INVALID_REQUEST
    if 500 <= status < 600:
        return ErrorKind.PROVIDER_UNAVAILABLE
    return ErrorKind.UNKNOWN


__all__ = [
    "ErrorKind",
    "LLMErrorDetails",
    "LLMError",
    "parse_retry_after_seconds",
    "kind_from_status",
]
