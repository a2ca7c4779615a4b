"""Session-level score aggregation and readiness reporting."""
from __future__ import annotations

import math
from typing import Dict, List, Literal, Optional

from pydantic import Field
from pydantic.alias_generators import to_camel

from agents.types import METRIC_KEYS
from flow_manager.events import CamelModel
from interview_session.state import SessionState

ReadinessLevel = Literal["highly-confident", "interview-ready", "needs-improvement", "not-ready"]

GAP_PENALTY_PER_GAP = 5
GAP_PENALTY_CAP = 30
CONSISTENCY_RANGE = 15
CONSISTENCY_BONUS = 10
STRENGTH_MEAN = 75
IMPROVEMENT_MEAN = 60

METRIC_LABELS = {
    "clarity": "Clarity",
    "relevance": "Relevance",
    "depth": "Depth",
    "structure": "Structure",
    "technical_accuracy": "Technical accuracy",
}
IMPROVEMENT_SUGGESTIONS = {
    "clarity": "Practice concise answers and cut filler words",
    "relevance": "Address the question directly and cover the core concepts",
    "depth": "Add examples, trade-offs and real-world use cases",
    "structure": "Open with the idea, develop it, and close with a clear takeaway",
    "technical_accuracy": "Review fundamentals and use terminology precisely",
}


class TopicPerformance(CamelModel):
    topic: str
    turns: int
    average: float


class FinalReport(CamelModel):
    session_id: str
    status: str
    turns_answered: int
    metric_means: Dict[str, float] = Field(default_factory=dict)
    overall_mean: float = 0.0
    readiness_score: int = Field(ge=0, le=100)
    readiness_level: ReadinessLevel
    open_gap_count: int = 0
    strengths: List[str] = Field(default_factory=list)
    improvement_areas: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    topic_performance: List[TopicPerformance] = Field(default_factory=list)


def _round1(value: float) -> float:
    """Round a float to one decimal place with stable formatting."""
    return float(f"{value:.1f}")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def readiness_level(score: int) -> ReadinessLevel:
    if score >= 80:
        return "highly-confident"
    if score >= 65:
        return "interview-ready"
    if score >= 40:
        return "needs-improvement"
    return "not-ready"


def readiness_score(
    overall_mean: float,
    metric_means: Dict[str, float],
    open_gap_count: int,
    *,
    include_bonus: bool = True,
) -> int:
    """``clamp(mean - min(5 * gaps, 30) + consistency bonus, 0, 100)``."""

    value = overall_mean - min(GAP_PENALTY_PER_GAP * open_gap_count, GAP_PENALTY_CAP)
    if include_bonus and metric_means:
        spread = max(metric_means.values()) - min(metric_means.values())
        if spread < CONSISTENCY_RANGE:
            value += CONSISTENCY_BONUS
    return max(0, min(100, _round_half_up(value)))


def metric_means(state: SessionState) -> Dict[str, float]:
    evaluations = [turn.evaluation for turn in state.closed_turns() if turn.evaluation is not None]
    if not evaluations:
        return {}
    return {key: sum(getattr(ev, key) for ev in evaluations) / len(evaluations) for key in METRIC_KEYS}


def topic_performance(state: SessionState) -> List[TopicPerformance]:
    buckets: Dict[str, List[int]] = {}
    for turn in state.closed_turns():
        assert turn.evaluation is not None
        buckets.setdefault(turn.question.topic, []).append(turn.evaluation.overall_score)
    return [
        TopicPerformance(topic=topic, turns=len(scores), average=_round1(sum(scores) / len(scores)))
        for topic, scores in buckets.items()
    ]


def final_report(state: SessionState, open_gap_count: int, *, terminated: Optional[bool] = None) -> FinalReport:
    """Summarise a finished session; the consistency bonus is skipped on termination."""

    terminated = state.status == "terminated" if terminated is None else terminated
    closed = state.closed_turns()
    means = metric_means(state)
    overall = sum(turn.evaluation.overall_score for turn in closed if turn.evaluation) / len(closed) if closed else 0.0
    score = readiness_score(overall, means, open_gap_count, include_bonus=not terminated)
    strengths = [f"Strong {METRIC_LABELS[key].lower()}" for key, value in means.items() if value >= STRENGTH_MEAN]
    weak = [key for key, value in means.items() if value < IMPROVEMENT_MEAN]
    return FinalReport(
        session_id=state.session_id,
        status=state.status,
        turns_answered=len(closed),
        metric_means={to_camel(key): _round1(value) for key, value in means.items()},
        overall_mean=_round1(overall),
        readiness_score=score,
        readiness_level=readiness_level(score),
        open_gap_count=open_gap_count,
        strengths=strengths,
        improvement_areas=[METRIC_LABELS[key] for key in weak],
        suggestions=[IMPROVEMENT_SUGGESTIONS[key] for key in weak],
        topic_performance=topic_performance(state),
    )


__all__ = [
    "FinalReport",
    "TopicPerformance",
    "final_report",
    "metric_means",
    "readiness_level",
    "readiness_score",
    "topic_performance",
]
