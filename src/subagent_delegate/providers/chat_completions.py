"""Client side of the chat-completion protocol spoken by secondary agents.

The loop driver only needs one call: send the whole transcript, get back the
assistant text of the first choice. Anything else (non-2xx status, a body that
is not JSON, no ``choices``) is a ``ChatTransportError``; retrying transient
network failures is the transport's job and happens before that error surfaces.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from subagent_delegate.config import DelegationConfig
from subagent_delegate.observability.structured_log import log_json
from subagent_delegate.providers.transport import build_httpx_client, post_json_with_retries

logger = logging.getLogger(__name__)


class ChatTransportError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _normalize_messages(messages: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for item in messages or []:
        if not isinstance(item, dict):
            continue
        role = str(item.get("role") or "user").strip().lower() or "user"
        if role not in {"system", "user", "assistant"}:
            role = "user"
        out.append({"role": role, "content": str(item.get("content") or "")})
    return out


class ChatCompletionsClient:
    """OpenAI-compatible ``/chat/completions`` client (non-streaming)."""

    def __init__(
        self,
        endpoint: str,
        model: str,
        api_key: str = "",
        temperature: float = 0.7,
        timeout_sec: int = 120,
        attempts: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._endpoint = (endpoint or "").strip().rstrip("/")
        self._model = (model or "").strip()
        self._api_key = (api_key or "").strip()
        self._temperature = float(temperature)
        self._timeout_sec = max(1, int(timeout_sec))
        self._attempts = max(1, int(attempts))
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(
        cls,
        config: DelegationConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ChatCompletionsClient":
        return cls(
            endpoint=config.endpoint,
            model=config.model,
            api_key=config.api_key,
            temperature=config.temperature,
            timeout_sec=config.timeout_sec,
            attempts=config.transport_attempts,
            transport=transport,
        )

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = build_httpx_client(
                base_url=self._endpoint,
                headers=headers,
                connect_timeout_sec=min(10.0, float(self._timeout_sec)),
                read_timeout_sec=float(self._timeout_sec),
                transport=self._transport,
            )
        return self._client

    async def complete(self, messages: Sequence[Dict[str, str]]) -> str:
        if not self._endpoint:
            raise ChatTransportError("Chat endpoint not configured.")
        payload: Dict[str, Any] = {
            "model": self._model,
            "messages": _normalize_messages(messages),
            "temperature": self._temperature,
            "stream": False,
        }
        try:
            resp = await post_json_with_retries(
                self._get_client(),
                path="/chat/completions",
                payload=payload,
                attempts=self._attempts,
            )
        except httpx.HTTPError as exc:
            raise ChatTransportError(f"Chat request failed: {exc}") from exc
        if resp.status_code < 200 or resp.status_code >= 300:
            detail = (resp.text or "")[:300]
            log_json(logger, "subagent.chat.http_error", status=resp.status_code, model=self._model)
            raise ChatTransportError(f"API Error: {resp.status_code} {detail}".strip(), status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise ChatTransportError("API Error: response body is not JSON.") from exc
        return extract_completion_text(data)

    async def health(self) -> Dict[str, Any]:
        return {
            "endpoint": self._endpoint,
            "model": self._model,
            "status": "configured" if self._endpoint else "unconfigured",
        }

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def extract_completion_text(data: Any) -> str:
    if not isinstance(data, dict):
        raise ChatTransportError("API Error: unexpected response shape.")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ChatTransportError("API Error: response has no choices.")
    first = choices[0] if isinstance(choices[0], dict) else {}
    message = first.get("message")
    if isinstance(message, dict):
        content = message.get("content")
        if isinstance(content, str):
            return content
        if content is None:
            return ""
    text = first.get("text")
    if isinstance(text, str):
        return text
    return ""
