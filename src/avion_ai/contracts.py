from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class DecisionRequest:
    messages: list[dict[str, str]]
    model: str
    temperature: float = 0.7
    max_tokens: int = 1000


@dataclass(frozen=True)
class AttemptRecord:
    number: int
    model: str
    state: str
    error: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    content: str
    model: str
    attempts: int
    used_fallback_model: bool
    latency_seconds: float
    history: list[AttemptRecord] = field(default_factory=list)
    metadata: dict[str, Any] | None = None
