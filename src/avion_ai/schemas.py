from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DecisionModel(BaseModel):
    """Base for parsed LLM decisions: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class DailyObjective(DecisionModel):
    objective: str = Field(min_length=1)
    type: str
    priority: str
    reason: str
    estimated_time: str | None = None
    success_criteria: str | None = None


class WeeklyAnalysis(DecisionModel):
    verdict: Literal["excellent", "good", "needs_improvement", "critical"]
    weekly_score: int = Field(ge=0, le=100)
    weakest_area: str
    focus_shift: str
    adjustments: list[str]
    risk_factors: list[str] = Field(default_factory=list)
    strengths: list[str] = Field(default_factory=list)


class SyllabusTask(DecisionModel):
    day: str
    task: str
    difficulty: int = Field(ge=1, le=5)
    min_time: int = Field(ge=0)
    emergency_time: int = Field(ge=0)
    skills: list[str] = Field(default_factory=list)


class SkillSyllabus(DecisionModel):
    week_title: str
    difficulty_level: int = Field(ge=1, le=5)
    focus_areas: list[str]
    daily_tasks: list[SyllabusTask] = Field(min_length=1)
    emergency_task: str
    adaptation_reason: str


class RecoveryDecision(DecisionModel):
    enter_recovery_mode: bool
    recovery_level: Literal["light", "deep", "emergency"]
    reason: str
    recovery_duration: str | None = None
    simplified_tasks: list[str] = Field(default_factory=list)
    exit_criteria: str | None = None
    urgency_level: Literal["low", "medium", "high"] = "low"


class ReadinessExplanation(DecisionModel):
    readiness_explanation: str
    trend_analysis: str
    next_actions: list[str] = Field(min_length=1)
    risk_assessment: Literal["low", "medium", "high"]
    time_to_improve: str | None = None
    focus_priority: str | None = None


class HealthStatus(DecisionModel):
    status: str


# Safe defaults returned when the LLM path fails.


def fallback_daily_objective() -> DailyObjective:
    return DailyObjective(
        objective="Complete Morning Protocol Block",
        type="protocol",
        priority="high",
        reason="AI unavailable - defaulting to protocol consistency",
        estimated_time="30 minutes",
        success_criteria="Complete at least 2 critical blocks",
    )


def fallback_weekly_analysis() -> WeeklyAnalysis:
    return WeeklyAnalysis(
        verdict="needs_improvement",
        weekly_score=50,
        weakest_area="protocol_consistency",
        focus_shift="Focus on daily protocol completion",
        adjustments=["Complete morning blocks daily", "Track time more consistently"],
        risk_factors=["Inconsistent execution"],
        strengths=["System awareness"],
    )


def fallback_skill_syllabus(week_number: int) -> SkillSyllabus:
    return SkillSyllabus(
        week_title=f"Week {week_number}: Basic Training",
        difficulty_level=2,
        focus_areas=["Fundamentals"],
        daily_tasks=[
            SyllabusTask(
                day=f"Day {i + 1}",
                task="Basic practice exercises",
                difficulty=2,
                min_time=30,
                emergency_time=15,
                skills=["basic"],
            )
            for i in range(7)
        ],
        emergency_task="Quick review session",
        adaptation_reason="AI unavailable - using safe defaults",
    )


def fallback_recovery_decision() -> RecoveryDecision:
    return RecoveryDecision(
        enter_recovery_mode=False,
        recovery_level="light",
        reason="AI unavailable - maintaining current mode",
        recovery_duration="N/A",
        simplified_tasks=["Complete one small study task", "Maintain basic routine"],
        exit_criteria="Complete 2 consecutive days of basic tasks",
        urgency_level="low",
    )


def fallback_readiness_explanation() -> ReadinessExplanation:
    return ReadinessExplanation(
        readiness_explanation="Continue consistent study across all subjects",
        trend_analysis="Steady progress maintained",
        next_actions=["Complete daily protocol blocks", "Focus on weakest subject area"],
        risk_assessment="medium",
        time_to_improve="4-6 weeks",
        focus_priority="DAA",
    )
