#!filepath: src/canopticon_app/llm/client.py
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

import requests

from canopticon_app.llm.errors import ErrorKind, LLMError, LLMErrorDetails
from canopticon_app.llm.http_transport import HTTPTransport
from canopticon_app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ModelResult:
    """Outcome of one model call.

    Attributes:
        success: True when `data` holds a parsed JSON object.
        data: Parsed object.
        error: Short error description on failure.
        model: Model id used.
        raw_text: Raw completion text, kept for diagnostics.
    """

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    model: str = ""
    raw_text: str = ""

    @classmethod
    def failure(cls, error: str, *, model: str = "", raw_text: str = "") -> ModelResult:
        return cls(success=False, error=error, model=model, raw_text=raw_text)


class ModelCaller(Protocol):
    """Anything able to turn a prompt plus structured input into JSON."""

    def call_model(
        self, prompt: str, input_json: Mapping[str, Any], model_name: str
    ) -> ModelResult: ...


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse a JSON object, tolerating code fences and surrounding prose."""
    s = str(text or "").strip()
    if not s:
        return None
    try:
        obj = json.loads(s)
        return obj if isinstance(obj, dict) else None
    except json.JSONDecodeError:
        pass

    m = re.search(r"\{[\s\S]*\}", s)
    if not m:
        return None
    try:
        obj = json.loads(m.group(0))
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


@dataclass(slots=True)
class ChatModelClient:
    """OpenAI compatible /chat/completions client.

    Never raises to callers: transport, HTTP and parse failures come back as
    ModelResult with success False.

    Attributes:
        base_url: API root, for example https://api.openai.com/v1.
        api_key: Bearer token.
        timeout_seconds: Request timeout.
        temperature: Sampling temperature.
        max_tokens: Optional completion cap.
    """

    base_url: str
    api_key: str
    timeout_seconds: int = 30
    temperature: float = 0.1
    max_tokens: Optional[int] = None
    _session: requests.Session = field(default_factory=requests.Session, repr=False)

    def call_model(
        self, prompt: str, input_json: Mapping[str, Any], model_name: str
    ) -> ModelResult:
        model = str(model_name or "").strip()
        try:
            content = self._chat(prompt, input_json, model)
        except LLMError as e:
            logger.warning(f"Model call failed, model={model}, {e.describe()}")
            return ModelResult.failure(e.describe(), model=model)

        data = extract_json_object(content)
        if data is None:
            logger.warning(f"Model returned no JSON object, model={model}, chars={len(content)}")
            return ModelResult.failure(
                f"kind={ErrorKind.PARSE.value}, err=no json object",
                model=model,
                raw_text=content,
            )
        return ModelResult(success=True, data=data, model=model, raw_text=content)

    def _chat(self, prompt: str, input_json: Mapping[str, Any], model: str) -> str:
        if not model:
            raise LLMError(
                LLMErrorDetails(kind=ErrorKind.INVALID_REQUEST, message="model missing")
            )
        if not str(self.api_key or "").strip():
            raise LLMError(
                LLMErrorDetails(
                    kind=ErrorKind.NOT_CONFIGURED, model=model, message="api key missing"
                )
            )

        payload: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": prompt},
                {
                    "role": "user",
                    "content": json.dumps(dict(input_json), ensure_ascii=False),
                },
            ],
            "temperature": float(self.temperature),
            "response_format": {"type": "json_object"},
        }
        if self.max_tokens is not None:
            payload["max_tokens"] = int(self.max_tokens)

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        t = HTTPTransport(timeout_seconds=int(self.timeout_seconds))
        data = t.post_json(
            url=f"{self.base_url.rstrip('/')}/chat/completions",
            headers=headers,
            payload=payload,
            model=model,
            session=self._session,
        )

        choices = data.get("choices") or [{}]
        first = choices[0] if isinstance(choices, list) and choices else {}
        message = first.get("message") if isinstance(first, dict) else None
        content = str((message or {}).get("content") or "").strip()
        if not content:
            raise LLMError(
                LLMErrorDetails(
                    kind=ErrorKind.PARSE, model=model, message="empty completion"
                )
            )
        return content
