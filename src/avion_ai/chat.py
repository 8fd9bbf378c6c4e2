from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

from .contracts import DecisionRequest
from .errors import UpstreamProtocolError


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatCompletionRequest(BaseModel):
    """Body of an OpenAI-compatible chat completion call."""

    model_config = ConfigDict(extra="allow")

    model: str
    messages: list[ChatMessage]
    temperature: float = 0.7
    max_tokens: int = 1000
    top_p: float = 1
    stream: Literal[False] = False

    @field_validator("messages")
    @classmethod
    def _validate_messages(cls, v: list[ChatMessage]) -> list[ChatMessage]:
        if not v:
            raise ValueError("messages must be non-empty.")
        return v

    @field_validator("temperature")
    @classmethod
    def _validate_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError("temperature must be between 0 and 2.")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _validate_max_tokens(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_tokens must be > 0.")
        return v


def build_request_body(request: DecisionRequest) -> dict[str, Any]:
    body = ChatCompletionRequest(
        model=request.model,
        messages=[ChatMessage(**m) for m in request.messages],
        temperature=request.temperature,
        max_tokens=request.max_tokens,
    )
    return body.model_dump()


def extract_completion_text(data: Any) -> str:
    if not isinstance(data, dict):
        raise UpstreamProtocolError("Upstream response is not a JSON object.")

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise UpstreamProtocolError("Missing choices in upstream response.")

    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    if not isinstance(message, dict):
        raise UpstreamProtocolError("Missing message in upstream response.")

    content = message.get("content")
    if not isinstance(content, str):
        raise UpstreamProtocolError("Missing content in upstream response.")
    return content


def extract_error_message(data: Any) -> str | None:
    """Pull a human readable message out of a vendor or proxy error body.

    The vendor answers `{"error": {"message": ...}}`; the proxy answers
    `{"error": "...", "message": "<vendor body>"}`.
    """
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    message = data.get("message")
    if isinstance(message, str) and message:
        return message
    if isinstance(error, str) and error:
        return error
    return None
