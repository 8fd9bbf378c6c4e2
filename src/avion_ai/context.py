from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import date, timedelta
from types import MappingProxyType
from typing import Any

from .store import ProgressSource

Context = Mapping[str, Any]

PROTOCOL_BLOCKS = 4
CRITICAL_BLOCKS = ("morning", "evening")
DEADLINE_EVENT_TYPES = ("exam", "deadline")
DEADLINE_HORIZON_DAYS = 14

DEFAULT_ACADEMIC_BREAKDOWN = {"DAA": 70, "Java": 60, "OS": 65}
DEFAULT_SKILL_BREAKDOWN = {"Bash": 50, "Python": 70, "Security": 40}
DEFAULT_DAYS_TO_PLACEMENT = 120


def _freeze(values: dict[str, Any]) -> Context:
    return MappingProxyType(values)


def _mean(values: list[float], default: float = 0.0) -> float:
    return sum(values) / len(values) if values else default


def consecutive_missed_days(history: list[dict[str, Any]], today: date, window: int = 7) -> int:
    """Days in a row, counting back from `today`, without a scored execution."""
    by_date = {r.get("date"): r for r in history}
    missed = 0
    for offset in range(window):
        record = by_date.get((today - timedelta(days=offset)).isoformat())
        if record is None or not record.get("execution_score"):
            missed += 1
        else:
            break
    return missed


def missed_critical_blocks(routines: list[dict[str, Any]]) -> int:
    missed = 0
    for routine in routines:
        blocks = routine.get("blocks") or {}
        missed += sum(1 for block_id in CRITICAL_BLOCKS if not (blocks.get(block_id) or {}).get("completed"))
    return missed


def performance_trend(scores: list[float]) -> str:
    if len(scores) < 2:
        return "stable"
    half = len(scores) // 2
    earlier, later = _mean(scores[:half]), _mean(scores[half:])
    if later - earlier >= 5:
        return "improving"
    if earlier - later >= 5:
        return "declining"
    return "stable"


class ContextGatherer:
    """Builds read-only context snapshots from the progress store.

    Nothing is retried here: a failing read propagates so the caller can
    fall back.
    """

    def __init__(self, source: ProgressSource, *, today: Callable[[], date] | None = None):
        self.source = source
        self._today: Callable[[], date] = today or date.today

    def _next_deadline(self, today: date) -> dict[str, Any] | None:
        events = self.source.get_upcoming_events(today, DEADLINE_HORIZON_DAYS)
        critical = [e for e in events if (e.get("type") or e.get("event_type")) in DEADLINE_EVENT_TYPES]
        if not critical:
            return None
        nearest = min(critical, key=lambda e: e["date"])
        return {
            "title": nearest.get("title") or nearest.get("event"),
            "days_until": (date.fromisoformat(nearest["date"][:10]) - today).days,
            "type": nearest.get("type") or nearest.get("event_type"),
        }

    def gather_daily(self) -> Context:
        today = self._today()
        state = self.source.get_system_state()
        routine = self.source.get_daily_routine(today) or {}
        blocks = routine.get("blocks") or {}
        return _freeze(
            {
                "date": today.isoformat(),
                "day_type": self.source.get_day_type(today),
                "current_streak": state.get("current_streak", 0),
                "momentum_score": state.get("momentum_score", 0),
                "protocol_completed": sum(1 for b in blocks.values() if (b or {}).get("completed")),
                "protocol_total": PROTOCOL_BLOCKS,
                "next_deadline": self._next_deadline(today),
                "skill_progress": state.get("skill_progress", "In progress"),
                "academic_progress": state.get("academic_progress", 0),
                "recent_performance": state.get("recent_performance", "Steady"),
            }
        )

    def gather_weekly(self) -> Context:
        executions = self.source.get_execution_history(7)
        routines = self.source.get_routine_history(7)
        state = self.source.get_system_state()
        scores = [float(e.get("execution_score") or 0) for e in executions]

        minutes: dict[str, int] = {}
        for entry in self.source.get_time_tracking(7):
            minutes[entry["category"]] = minutes.get(entry["category"], 0) + int(entry.get("minutes") or 0)
        total_minutes = sum(minutes.values())
        distribution = (
            {category: round(m * 100 / total_minutes) for category, m in sorted(minutes.items())}
            if total_minutes
            else {}
        )

        return _freeze(
            {
                "execution_days": len(executions),
                "avg_daily_score": round(_mean(scores), 1),
                "streak_status": "active" if executions else "broken",
                "protocol_completion": round(_mean([float(r.get("momentum_score") or 0) for r in routines]), 1),
                "skill_progress": state.get("skill_progress", "Steady progress"),
                "academic_progress": state.get("academic_progress", 0),
                "time_distribution": distribution,
                "missed_days": 7 - len(executions),
                "performance_trend": performance_trend(scores),
            }
        )

    def gather_skill(self, track_id: str, week_number: int) -> Context:
        progress = self.source.get_skill_progress(track_id, week_number - 1)
        completed = [p for p in progress if p.get("completed")]
        spent = sum(float(p.get("time_spent") or 0) for p in progress)
        estimated = sum(float(p.get("estimated_time") or 0) for p in progress)
        struggle = sorted(
            {p["topic"] for p in progress if p.get("topic") and (p.get("confidence_rating") or 3) <= 2}
        )
        strengths = sorted(
            {p["topic"] for p in progress if p.get("topic") and (p.get("confidence_rating") or 3) >= 4}
        )
        return _freeze(
            {
                "track_id": track_id,
                "track_name": track_id[:1].upper() + track_id[1:],
                "week_number": week_number,
                "previous_completion": round(len(completed) * 100 / max(len(progress), 1), 1),
                "avg_difficulty": round(_mean([float(p.get("difficulty_level") or 2) for p in progress], 2.0), 1),
                "time_efficiency": round(min(estimated * 100 / spent, 100.0), 1) if spent and estimated else 75,
                "avg_confidence": round(_mean([float(p.get("confidence_rating") or 3) for p in progress], 3.0), 1),
                "struggle_areas": struggle,
                "strengths": strengths,
            }
        )

    def gather_recovery(self) -> Context:
        today = self._today()
        state = self.source.get_system_state()
        executions = self.source.get_execution_history(7)
        routines = self.source.get_routine_history(7)

        missed = consecutive_missed_days(executions, today)
        completion_rate = _mean([float(e.get("execution_score") or 0) for e in executions])
        emergency_usage = sum(1 for r in routines if r.get("emergency_mode")) * 100 / max(len(routines), 1)
        momentum = state.get("momentum_score", 0)

        stress: list[str] = []
        if missed >= 2:
            stress.append("consecutive_missed_days")
        if completion_rate < 30:
            stress.append("low_completion_rate")
        if emergency_usage > 30:
            stress.append("emergency_mode_overuse")
        if momentum < 25:
            stress.append("low_momentum")

        return _freeze(
            {
                "current_streak": state.get("current_streak", 0),
                "days_since_activity": missed,
                "recent_completion_rate": round(completion_rate),
                "momentum_score": momentum,
                "missed_critical_blocks": missed_critical_blocks(routines),
                "stress_indicators": stress,
                "emergency_mode_usage": round(emergency_usage),
                "consecutive_missed_days": missed,
            }
        )

    def gather_placement(self) -> Context:
        today = self._today()
        state = self.source.get_system_state()
        academic = dict(state.get("academic_breakdown") or DEFAULT_ACADEMIC_BREAKDOWN)
        skills = dict(state.get("skill_breakdown") or DEFAULT_SKILL_BREAKDOWN)
        combined = {**academic, **skills}

        season = state.get("placement_season")
        days_to_placement = (
            (date.fromisoformat(str(season)[:10]) - today).days if season else DEFAULT_DAYS_TO_PLACEMENT
        )

        return _freeze(
            {
                "overall_readiness": round(_mean([float(v) for v in combined.values()])),
                "academic_breakdown": academic,
                "skill_breakdown": skills,
                "recent_trend": state.get("recent_trend", "stable"),
                "weak_areas": sorted(k for k, v in combined.items() if v < 50),
                "strong_areas": sorted(k for k, v in combined.items() if v >= 70),
                "days_to_placement": days_to_placement,
            }
        )
