#!filepath: src/canopticon_app/llm/http_transport.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping

import requests
from requests import Response

from canopticon_app.llm.errors import (
    ErrorKind,
    LLMError,
    LLMErrorDetails,
    kind_from_status,
    parse_retry_after_seconds,
)

MAX_RESPONSE_BYTES = 2_000_000


@dataclass(frozen=True, slots=True)
class HTTPTransport:
    """JSON over HTTP with an explicit timeout and normalized errors.

    Retries are left to the caller so the attempt count stays bounded in one
    place.

    Args:
        timeout_seconds: Read timeout per request in seconds.
    """

    timeout_seconds: int

    def post_json(
        self,
        url: str,
        headers: Mapping[str, str],
        payload: Dict[str, Any],
        model: str,
        session: requests.Session | None = None,
    ) -> Dict[str, Any]:
        """POST a JSON payload and return the decoded JSON object.

        Args:
            url: Endpoint.
            headers: Request headers.
            payload: JSON body.
            model: Model id, for error details.
            session: Optional session, a bare request otherwise.

        Returns:
            Decoded response object.

        Raises:
            LLMError: Normalized error.
        """
        total_timeout = int(max(1, int(self.timeout_seconds)))
        connect_timeout = int(max(1, min(10, total_timeout)))
        poster = session.post if session is not None else requests.post

        try:
            r = poster(
                url,
                headers=dict(headers),
                json=payload,
                timeout=(connect_timeout, total_timeout),
            )
        except requests.Timeout as ex:
            raise LLMError(
                LLMErrorDetails(kind=ErrorKind.TIMEOUT, model=model, message=str(ex))
            ) from ex
        except requests.RequestException as ex:
            raise LLMError(
                LLMErrorDetails(kind=ErrorKind.NETWORK, model=model, message=str(ex))
            ) from ex

        try:
            return self._handle_response(r, model=model)
        finally:
            r.close()

    def _handle_response(self, r: Response, *, model: str) -> Dict[str, Any]:
        status = int(r.status_code)
        body_bytes = r.content or b""
        if len(body_bytes) > MAX_RESPONSE_BYTES:
            raise LLMError(
                LLMErrorDetails(
                    kind=ErrorKind.INVALID_REQUEST,
                    model=model,
                    status_code=status,
                    message=f"Response too large, bytes={len(body_bytes)}",
                )
            )
        body_text = body_bytes.decode("utf8", errors="replace")

        if 200 <= status < 300:
            try:
                parsed = json.loads(body_text)
            except json.JSONDecodeError as ex:
                raise LLMError(
                    LLMErrorDetails(
                        kind=ErrorKind.PARSE,
                        model=model,
                        status_code=status,
                        message=str(ex),
                        raw=body_text[:2000],
                    )
                ) from ex
            if not isinstance(parsed, dict):
                raise LLMError(
                    LLMErrorDetails(
                        kind=ErrorKind.PARSE,
                        model=model,
                        status_code=status,
                        message="Response JSON is not an object",
                        raw=body_text[:2000],
                    )
                )
            return dict(parsed)

        retry_after = parse_retry_after_seconds(r.headers)
        raw_text = body_text[:2000]
        raise LLMError(
            LLMErrorDetails(
                kind=kind_from_status(status),
                model=model,
                status_code=status,
                retry_after_seconds=retry_after,
                message=_best_message(raw_text),
                raw=raw_text,
            )
        )


def _best_message(body: str) -> str:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            m = str(err.get("message") or "").strip()
            return m if m else body
        if isinstance(err, str) and err.strip():
            return err.strip()
    return body
