"""Typed decoding of the JSON objects the LLM is asked to return."""

from __future__ import annotations

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import DecisionValidationError, ResponseParseError

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def _try_load_dict(text: str) -> dict[str, Any] | None:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the JSON object in `text`.

    Accepts a bare object, an object inside a ```json fence, or the outermost
    `{...}` span of an otherwise chatty answer.
    """
    stripped = text.strip()
    if not stripped:
        raise ResponseParseError("Empty model response.")

    direct = _try_load_dict(stripped)
    if direct is not None:
        return direct

    fenced = _FENCED_JSON.search(stripped)
    if fenced is not None:
        payload = _try_load_dict(fenced.group(1))
        if payload is not None:
            return payload

    start, end = stripped.find("{"), stripped.rfind("}")
    if start != -1 and end > start:
        payload = _try_load_dict(stripped[start : end + 1])
        if payload is not None:
            return payload

    raise ResponseParseError(f"Model response is not a JSON object: {stripped[:120]!r}")


def parse_decision(text: str, schema: type[ModelT]) -> ModelT:
    payload = extract_json_object(text)
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise DecisionValidationError(
            f"{schema.__name__} is missing or has invalid fields: {', '.join(fields)}",
            fields=fields,
        ) from e
