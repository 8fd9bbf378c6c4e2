from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol

import structlog

from .contracts import AttemptRecord, DispatchResult
from .errors import ModelUnavailableError, RequestError, RetriesExhaustedError
from .metrics import llm_attempts_total, llm_fallback_model_total

log = structlog.get_logger()


class AttemptState(str, Enum):
    ATTEMPT = "attempt"
    FALLBACK_MODEL = "fallback_model"
    FAILED = "failed"


class Dispatcher(Protocol):
    def model_for(self, use_fallback_model: bool) -> str: ...

    async def dispatch(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
        use_fallback_model: bool = False,
    ) -> str: ...


class RetryPolicy:
    """
    Bounded retry on the primary model, then one attempt on the fallback model.

    Two failure classes:
      - transient (`RequestError`): linear backoff, `retry_delay_seconds * n`
        after the n-th failed attempt, until `max_retries` is spent
      - model unavailable (`ModelUnavailableError`): skip the remaining
        primary attempts and go to the fallback model immediately
    Configuration errors are raised as-is. At most `max_retries + 1` requests
    are made per call, strictly one after another.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.dispatcher = dispatcher
        self.max_retries = max(1, int(max_retries))
        self.retry_delay_seconds = max(0.0, float(retry_delay_seconds))
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep

    def backoff_for(self, attempt_number: int) -> float:
        """Delay before primary attempt `attempt_number` (1-based)."""
        if attempt_number <= 1:
            return 0.0
        return self.retry_delay_seconds * (attempt_number - 1)

    async def _attempt(
        self,
        *,
        number: int,
        state: AttemptState,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
        history: list[AttemptRecord],
    ) -> str:
        use_fallback_model = state is AttemptState.FALLBACK_MODEL
        model = self.dispatcher.model_for(use_fallback_model)
        try:
            text = await self.dispatcher.dispatch(
                messages,
                temperature=temperature,
                max_tokens=max_tokens,
                use_fallback_model=use_fallback_model,
            )
        except RequestError as e:
            llm_attempts_total.labels(model=model, outcome="error").inc()
            history.append(AttemptRecord(number=number, model=model, state=state.value, error=str(e)))
            log.warning("llm_attempt_failed", attempt=number, model=model, state=state.value, error=str(e))
            raise
        llm_attempts_total.labels(model=model, outcome="success").inc()
        history.append(AttemptRecord(number=number, model=model, state=state.value))
        return text

    async def run(
        self,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> DispatchResult:
        start = time.monotonic()
        history: list[AttemptRecord] = []
        state = AttemptState.ATTEMPT
        attempts = 0
        last_error: RequestError | None = None

        while state is AttemptState.ATTEMPT:
            attempts += 1
            delay = self.backoff_for(attempts)
            if delay > 0:
                await self._sleep(delay)
            try:
                text = await self._attempt(
                    number=attempts,
                    state=state,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    history=history,
                )
            except ModelUnavailableError as e:
                last_error = e
                llm_fallback_model_total.labels(reason="model_unavailable").inc()
                log.warning(
                    "llm_model_unavailable",
                    model=self.dispatcher.model_for(False),
                    fallback_model=self.dispatcher.model_for(True),
                )
                state = AttemptState.FALLBACK_MODEL
            except RequestError as e:
                last_error = e
                if attempts >= self.max_retries:
                    llm_fallback_model_total.labels(reason="retries_exhausted").inc()
                    log.warning(
                        "llm_trying_fallback_model",
                        attempts=attempts,
                        fallback_model=self.dispatcher.model_for(True),
                    )
                    state = AttemptState.FALLBACK_MODEL
            else:
                return DispatchResult(
                    content=text,
                    model=self.dispatcher.model_for(False),
                    attempts=attempts,
                    used_fallback_model=False,
                    latency_seconds=time.monotonic() - start,
                    history=history,
                )

        attempts += 1
        try:
            text = await self._attempt(
                number=attempts,
                state=state,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                history=history,
            )
        except RequestError as e:
            log.error("llm_request_failed", attempts=attempts, state=AttemptState.FAILED.value, error=str(e))
            raise RetriesExhaustedError(attempts, e, history=history) from e

        return DispatchResult(
            content=text,
            model=self.dispatcher.model_for(True),
            attempts=attempts,
            used_fallback_model=True,
            latency_seconds=time.monotonic() - start,
            history=history,
            metadata={"fallback_reason": str(last_error)} if last_error else None,
        )
