"""Message builders for each decision kind.

Every builder returns `[system, user]` chat messages. The user message embeds
the context snapshot and the JSON shape the answer must follow.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .context import Context

SYSTEM_PREFIX = "You are AVION.EXE, an execution engine for academic and skill mastery."
JSON_ONLY = "Respond with ONLY the JSON object, no additional text."


@dataclass(frozen=True)
class Sampling:
    temperature: float
    max_tokens: int


DAILY_OBJECTIVE = Sampling(temperature=0.3, max_tokens=500)
WEEKLY_ANALYSIS = Sampling(temperature=0.4, max_tokens=800)
SKILL_SYLLABUS = Sampling(temperature=0.5, max_tokens=1200)
RECOVERY_MODE = Sampling(temperature=0.2, max_tokens=600)
PLACEMENT_READINESS = Sampling(temperature=0.3, max_tokens=700)
HEALTH_CHECK = Sampling(temperature=0.1, max_tokens=50)

DAILY_OBJECTIVE_SHAPE = {
    "objective": "Complete Morning Protocol Block",
    "type": "protocol|academic|skill|deadline",
    "priority": "critical|high|medium",
    "reason": "Why this matters today",
    "estimatedTime": "30-60 minutes",
    "successCriteria": "How to know it is done",
}

WEEKLY_ANALYSIS_SHAPE = {
    "verdict": "excellent|good|needs_improvement|critical",
    "weeklyScore": 85,
    "weakestArea": "skill_training|academic_study|protocol_consistency|time_management",
    "focusShift": "What to focus on next week",
    "adjustments": ["Adjustment 1", "Adjustment 2"],
    "riskFactors": ["Risk 1"],
    "strengths": ["Strength 1"],
}

RECOVERY_MODE_SHAPE = {
    "enterRecoveryMode": True,
    "recoveryLevel": "light|deep|emergency",
    "reason": "Why",
    "recoveryDuration": "3-7 days",
    "simplifiedTasks": ["Task 1", "Task 2"],
    "exitCriteria": "When to leave recovery mode",
    "urgencyLevel": "low|medium|high",
}

PLACEMENT_READINESS_SHAPE = {
    "readinessExplanation": "Where readiness stands",
    "trendAnalysis": "Why it moved recently",
    "nextActions": ["Action 1 with timeline", "Action 2 with timeline"],
    "riskAssessment": "low|medium|high",
    "timeToImprove": "2-4 weeks",
    "focusPriority": "DAA|Java|Projects|Skills",
}


def _messages(role_line: str, user: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": f"{SYSTEM_PREFIX} {role_line} Respond only with valid JSON."},
        {"role": "user", "content": user},
    ]


def _schema(shape: dict[str, Any]) -> str:
    return json.dumps(shape, indent=2)


def _join(values: Any) -> str:
    if not values:
        return "none"
    return ", ".join(str(v) for v in values)


def daily_objective_messages(ctx: Context) -> list[dict[str, str]]:
    deadline = ctx.get("next_deadline")
    deadline_line = (
        f"{deadline['title']} in {deadline['days_until']} days ({deadline['type']})" if deadline else "none scheduled"
    )
    user = f"""Pick the single most important objective for today.

Context:
- Date: {ctx['date']} ({ctx['day_type']})
- Current streak: {ctx['current_streak']} days
- Momentum score: {ctx['momentum_score']}%
- Protocol blocks done: {ctx['protocol_completed']}/{ctx['protocol_total']}
- Next deadline: {deadline_line}
- Skill progress: {ctx['skill_progress']}
- Academic progress: {ctx['academic_progress']}%
- Recent performance: {ctx['recent_performance']}

Guidelines:
1. Exactly one objective.
2. A streak under 3 days means protecting the streak comes first.
3. A deadline within 3 days means preparing for it comes first.
4. Otherwise strengthen the weakest placement-critical area.

Answer shape:
{_schema(DAILY_OBJECTIVE_SHAPE)}

{JSON_ONLY}"""
    return _messages("You select the daily objective.", user)


def weekly_analysis_messages(ctx: Context) -> list[dict[str, str]]:
    user = f"""Review the last 7 days and recommend adjustments.

Week:
- Days executed: {ctx['execution_days']}/7 (missed {ctx['missed_days']})
- Average daily score: {ctx['avg_daily_score']}%
- Streak: {ctx['streak_status']}
- Protocol completion: {ctx['protocol_completion']}%
- Skill progress: {ctx['skill_progress']}
- Academic progress: {ctx['academic_progress']}
- Time split: {json.dumps(dict(ctx['time_distribution']))}
- Trend: {ctx['performance_trend']}

Answer shape:
{_schema(WEEKLY_ANALYSIS_SHAPE)}

{JSON_ONLY}"""
    return _messages("You analyse weekly performance.", user)


def skill_syllabus_messages(ctx: Context) -> list[dict[str, str]]:
    week = ctx["week_number"]
    shape = {
        "weekTitle": f"Week {week}: Adaptive {ctx['track_name']}",
        "difficultyLevel": 3,
        "focusAreas": ["Area 1", "Area 2"],
        "dailyTasks": [
            {
                "day": "Day 1",
                "task": "Task description",
                "difficulty": 3,
                "minTime": 45,
                "emergencyTime": 22,
                "skills": ["skill1"],
            }
        ],
        "emergencyTask": "Reduced task for emergency mode",
        "adaptationReason": "Why this difficulty and focus",
    }
    user = f"""Plan next week's practice for the {ctx['track_name']} track (week {week}).

Last week:
- Completion: {ctx['previous_completion']}%
- Average difficulty handled: {ctx['avg_difficulty']}/5
- Time efficiency: {ctx['time_efficiency']}%
- Confidence: {ctx['avg_confidence']}/5
- Struggling with: {_join(ctx['struggle_areas'])}
- Strong at: {_join(ctx['strengths'])}

Adapt the plan:
1. Completion below 70% lowers difficulty one level.
2. Completion above 90% with confidence above 4 raises it one level.
3. Time efficiency below 60% means more practice tasks.
4. Work on the struggle areas without dropping the strengths.
5. Each task has an emergency variant at half the time.

Answer shape (7 daily tasks):
{_schema(shape)}

{JSON_ONLY}"""
    return _messages("You generate adaptive skill curricula.", user)


def recovery_mode_messages(ctx: Context) -> list[dict[str, str]]:
    user = f"""Decide whether the user should switch to recovery mode.

State:
- Current streak: {ctx['current_streak']} days
- Days since last activity: {ctx['days_since_activity']}
- Recent completion rate: {ctx['recent_completion_rate']}%
- Momentum score: {ctx['momentum_score']}%
- Missed critical blocks: {ctx['missed_critical_blocks']}
- Stress indicators: {_join(ctx['stress_indicators'])}
- Emergency mode usage: {ctx['emergency_mode_usage']}%
- Consecutive missed days: {ctx['consecutive_missed_days']}

Recovery is warranted when the streak is broken with more than 2 idle days,
completion stays under 30%, momentum drops under 20%, several stress
indicators are present, or emergency mode is used on more than half the days.

Answer shape:
{_schema(RECOVERY_MODE_SHAPE)}

{JSON_ONLY}"""
    return _messages("You run the recovery system.", user)


def placement_readiness_messages(ctx: Context) -> list[dict[str, str]]:
    user = f"""Explain current placement readiness and the next concrete steps.

Readiness:
- Overall: {ctx['overall_readiness']}%
- Academics: {json.dumps(dict(ctx['academic_breakdown']))}
- Skills: {json.dumps(dict(ctx['skill_breakdown']))}
- Recent trend: {ctx['recent_trend']}
- Weak areas: {_join(ctx['weak_areas'])}
- Strong areas: {_join(ctx['strong_areas'])}
- Days until placement season: {ctx['days_to_placement']}

Answer shape:
{_schema(PLACEMENT_READINESS_SHAPE)}

{JSON_ONLY}"""
    return _messages("You advise on placement readiness.", user)


def health_check_messages() -> list[dict[str, str]]:
    return [
        {"role": "system", "content": 'You are a test system. Respond with exactly: {"status": "ok"}'},
        {"role": "user", "content": "Health check"},
    ]
