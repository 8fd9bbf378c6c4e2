from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict
from datetime import date
from typing import Any, TypeVar

import structlog

from . import prompts
from .config import DecisionLayerConfig
from .context import Context, ContextGatherer
from .contracts import AttemptRecord
from .dispatcher import RequestDispatcher
from .errors import RetriesExhaustedError
from .metrics import decisions_total
from .parsing import parse_decision
from .retry import Dispatcher, RetryPolicy
from .schemas import (
    DailyObjective,
    DecisionModel,
    HealthStatus,
    ReadinessExplanation,
    RecoveryDecision,
    SkillSyllabus,
    WeeklyAnalysis,
    fallback_daily_objective,
    fallback_readiness_explanation,
    fallback_recovery_decision,
    fallback_skill_syllabus,
    fallback_weekly_analysis,
)
from .store import DecisionLog, JsonProgressStore

log = structlog.get_logger()

ResultT = TypeVar("ResultT", bound=DecisionModel)

FALLBACK_CONFIDENCE = 0.1

# Context fields that each add to the confidence of a decision.
_CONFIDENCE_CONTEXT_FIELDS = ("current_streak", "momentum_score")


def calculate_confidence(context: Mapping[str, Any], result: Mapping[str, Any], key_field: str) -> float:
    """Data-completeness heuristic; advisory only."""
    confidence = 0.5
    for name in _CONFIDENCE_CONTEXT_FIELDS:
        if context.get(name) is not None:
            confidence += 0.1
    if context.get("next_deadline"):
        confidence += 0.1
    if result.get(key_field) is not None:
        confidence += 0.2
    return round(min(confidence, 1.0), 2)


def _attempt_log(history: list[AttemptRecord]) -> list[dict[str, Any]]:
    return [asdict(record) for record in history]


class DecisionLayer:
    """
    Context -> LLM -> typed decision, with a static fallback on any failure.

    Decision methods never raise: configuration, network, parse and store-read
    failures all end in the method's safe default, logged with confidence 0.1.
    """

    def __init__(
        self,
        cfg: DecisionLayerConfig | None = None,
        *,
        store: JsonProgressStore | None = None,
        gatherer: ContextGatherer | None = None,
        decision_log: DecisionLog | None = None,
        dispatcher: Dispatcher | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.cfg = cfg or DecisionLayerConfig()
        if store is None and (gatherer is None or decision_log is None):
            store = JsonProgressStore(self.cfg.store_path, fernet_key=self.cfg.store_fernet_key, today=today)
        self.gatherer = gatherer or ContextGatherer(store, today=today)
        self.decision_log: DecisionLog = decision_log or store
        self.dispatcher = dispatcher or RequestDispatcher(self.cfg)
        self.retry = RetryPolicy(
            self.dispatcher,
            max_retries=self.cfg.max_retries,
            retry_delay_seconds=self.cfg.retry_delay_seconds,
            sleeper=sleeper,
        )

    async def close(self) -> None:
        close = getattr(self.dispatcher, "close", None)
        if callable(close):
            await close()

    async def __aenter__(self) -> "DecisionLayer":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _log_decision(self, kind: str, context: Mapping[str, Any], result: DecisionModel, confidence: float) -> None:
        try:
            self.decision_log.log_ai_decision(kind, context, result.to_payload(), confidence)
        except Exception as e:
            log.warning("decision_log_write_failed", kind=kind, error=str(e))

    async def _decide(
        self,
        *,
        kind: str,
        gather: Callable[[], Context],
        build_messages: Callable[[Context], list[dict[str, str]]],
        sampling: prompts.Sampling,
        schema: type[ResultT],
        key_field: str,
        fallback: Callable[[], ResultT],
        log_context: Mapping[str, Any] | None = None,
    ) -> ResultT:
        start = time.monotonic()
        log_context = dict(log_context or {})
        try:
            context = gather()
            response = await self.retry.run(
                build_messages(context),
                temperature=sampling.temperature,
                max_tokens=sampling.max_tokens,
            )
            result = parse_decision(response.content, schema)
        except Exception as e:
            decision = fallback()
            failure_context: dict[str, Any] = {**log_context, "error": str(e)}
            attempt_history = _attempt_log(e.history) if isinstance(e, RetriesExhaustedError) else []
            if attempt_history:
                failure_context["llm_attempts"] = attempt_history
            decisions_total.labels(kind=kind, outcome="fallback").inc()
            log.warning(
                "decision_fallback_used",
                kind=kind,
                error=str(e),
                error_type=type(e).__name__,
                attempt_history=attempt_history,
            )
            self._log_decision(kind, failure_context, decision, FALLBACK_CONFIDENCE)
            return decision

        attempt_history = _attempt_log(response.history)
        confidence = calculate_confidence(context, result.model_dump(), key_field)
        self._log_decision(kind, {**log_context, **context, "llm_attempts": attempt_history}, result, confidence)
        decisions_total.labels(kind=kind, outcome="success").inc()
        log.info(
            "decision_made",
            kind=kind,
            model=response.model,
            attempts=response.attempts,
            used_fallback_model=response.used_fallback_model,
            fallback_reason=(response.metadata or {}).get("fallback_reason"),
            attempt_history=attempt_history,
            confidence=confidence,
            elapsed_ms=round((time.monotonic() - start) * 1000),
        )
        return result

    async def select_daily_objective(self) -> DailyObjective:
        return await self._decide(
            kind="daily_objective",
            gather=self.gatherer.gather_daily,
            build_messages=prompts.daily_objective_messages,
            sampling=prompts.DAILY_OBJECTIVE,
            schema=DailyObjective,
            key_field="objective",
            fallback=fallback_daily_objective,
        )

    async def analyze_weekly_performance(self) -> WeeklyAnalysis:
        return await self._decide(
            kind="weekly_analysis",
            gather=self.gatherer.gather_weekly,
            build_messages=prompts.weekly_analysis_messages,
            sampling=prompts.WEEKLY_ANALYSIS,
            schema=WeeklyAnalysis,
            key_field="verdict",
            fallback=fallback_weekly_analysis,
        )

    async def generate_skill_syllabus(self, track_id: str, week_number: int) -> SkillSyllabus:
        return await self._decide(
            kind="skill_syllabus",
            gather=lambda: self.gatherer.gather_skill(track_id, week_number),
            build_messages=prompts.skill_syllabus_messages,
            sampling=prompts.SKILL_SYLLABUS,
            schema=SkillSyllabus,
            key_field="daily_tasks",
            fallback=lambda: fallback_skill_syllabus(week_number),
            log_context={"track_id": track_id, "week_number": week_number},
        )

    async def should_enter_recovery_mode(self) -> RecoveryDecision:
        return await self._decide(
            kind="recovery_mode",
            gather=self.gatherer.gather_recovery,
            build_messages=prompts.recovery_mode_messages,
            sampling=prompts.RECOVERY_MODE,
            schema=RecoveryDecision,
            key_field="enter_recovery_mode",
            fallback=fallback_recovery_decision,
        )

    async def explain_placement_readiness(self) -> ReadinessExplanation:
        return await self._decide(
            kind="placement_readiness",
            gather=self.gatherer.gather_placement,
            build_messages=prompts.placement_readiness_messages,
            sampling=prompts.PLACEMENT_READINESS,
            schema=ReadinessExplanation,
            key_field="next_actions",
            fallback=fallback_readiness_explanation,
        )

    async def health_check(self) -> bool:
        try:
            response = await self.retry.run(
                prompts.health_check_messages(),
                temperature=prompts.HEALTH_CHECK.temperature,
                max_tokens=prompts.HEALTH_CHECK.max_tokens,
            )
            return parse_decision(response.content, HealthStatus).status == "ok"
        except Exception as e:
            log.error("decision_layer_health_check_failed", error=str(e), error_type=type(e).__name__)
            return False
