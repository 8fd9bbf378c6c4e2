from __future__ import annotations

import asyncio
import time

import httpx
import structlog

from .chat import build_request_body, extract_completion_text, extract_error_message
from .config import DecisionLayerConfig
from .contracts import DecisionRequest
from .errors import ConfigurationError, ModelUnavailableError, RequestError, RequestTimeoutError
from .metrics import llm_request_latency_seconds

log = structlog.get_logger()

MODEL_UNAVAILABLE_PATTERNS: tuple[str, ...] = (
    "decommissioned",
    "model_decommissioned",
)


def is_model_unavailable(message: str) -> bool:
    lowered = message.lower()
    return any(p in lowered for p in MODEL_UNAVAILABLE_PATTERNS)


class RequestDispatcher:
    """
    Sends one chat completion request to the configured endpoint.

    Routing is decided once, here:
      - direct mode: the Groq endpoint, with `Authorization: Bearer <key>`
      - proxy mode: the proxy path, which injects the key server-side
    Retries live in `RetryPolicy`; a dispatch is always a single request.
    """

    def __init__(self, cfg: DecisionLayerConfig, *, client: httpx.AsyncClient | None = None):
        self.cfg = cfg
        self.direct = cfg.use_direct_api
        self.url = cfg.endpoint_url()
        self._timeout_seconds = cfg.request_timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=cfg.request_timeout_seconds)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def model_for(self, use_fallback_model: bool) -> str:
        return self.cfg.fallback_model if use_fallback_model else self.cfg.primary_model

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.direct:
            headers["Authorization"] = f"Bearer {self.cfg.require_api_key()}"
        return headers

    async def dispatch(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        use_fallback_model: bool = False,
    ) -> str:
        if self.direct and not self.cfg.groq_api_key:
            raise ConfigurationError("Groq API key not configured. Set GROQ_API_KEY.")

        model = self.model_for(use_fallback_model)
        request = DecisionRequest(messages=messages, model=model, temperature=temperature, max_tokens=max_tokens)
        payload = build_request_body(request)

        start = time.monotonic()
        try:
            resp = await asyncio.wait_for(
                self._client.post(self.url, headers=self._headers(), json=payload),
                timeout=self._timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RequestTimeoutError(f"Request to {model} timed out after {self._timeout_seconds}s.") from e
        except httpx.HTTPError as e:
            raise RequestError(f"Request to {model} failed: {e}") from e
        finally:
            llm_request_latency_seconds.labels(model=model).observe(max(0.0, time.monotonic() - start))

        if not resp.is_success:
            try:
                body = resp.json()
            except ValueError:
                body = None
            message = extract_error_message(body) or "Unknown error"
            log.warning("llm_upstream_error", model=model, status_code=resp.status_code, message=message[:500])
            error_text = f"LLM API error: {resp.status_code} - {message}"
            if is_model_unavailable(message):
                raise ModelUnavailableError(error_text, status_code=resp.status_code)
            raise RequestError(error_text, status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise RequestError("Upstream returned a non-JSON body.", status_code=resp.status_code) from e

        text = extract_completion_text(data)
        log.debug(
            "llm_dispatch_ok",
            model=model,
            direct=self.direct,
            prompt_chars=sum(len(m.get("content", "")) for m in messages),
        )
        return text
