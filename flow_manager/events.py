from __future__ import annotations  # Server push events and the question/evaluation envelopes they carry

import datetime as dt
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agents.types import Difficulty, Evaluation, QuestionKind, utcnow
from interview_session.state import SessionState, Turn

EventName = Literal[
    "session_started",
    "question",
    "evaluating",
    "evaluation",
    "state_update",
    "hint",
    "paused",
    "resumed",
    "completed",
    "terminated",
    "error",
]


class CamelModel(BaseModel):  # Wire models serialise with camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class QuestionEnvelope(CamelModel):
    turn_number: int
    text: str
    kind: QuestionKind
    topic: str
    difficulty: Difficulty
    is_follow_up: bool
    parent_turn_number: Optional[int] = None
    expected_key_points: Optional[List[str]] = None
    timestamp: dt.datetime


class MetricsEnvelope(CamelModel):
    clarity: int
    relevance: int
    depth: int
    structure: int
    technical_accuracy: int


class FeedbackEnvelope(CamelModel):
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    score_breakdown: Dict[str, str] = Field(default_factory=dict)


class EvaluationEnvelope(CamelModel):
    turn_number: int
    score: int = Field(ge=0, le=100)
    metrics: MetricsEnvelope
    feedback: FeedbackEnvelope
    missing_concepts: List[str] = Field(default_factory=list)


class StatusEnvelope(CamelModel):
    session_id: str
    user_id: str
    status: str
    target_role: str
    current_difficulty: Difficulty
    turns_completed: int
    pending_turn_number: Optional[int] = None
    performance_window: List[int] = Field(default_factory=list)
    topics_asked: List[str] = Field(default_factory=list)
    struggling_topics: List[str] = Field(default_factory=list)
    strong_topics: List[str] = Field(default_factory=list)
    degraded: bool = False
    final_report: Optional[Dict[str, Any]] = None


class ServerEvent(BaseModel):
    event: EventName
    session_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: dt.datetime = Field(default_factory=utcnow)

    def wire(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "sessionId": self.session_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventSink = Callable[[ServerEvent], Awaitable[None]]


def question_envelope(turn: Turn) -> Dict[str, Any]:
    question = turn.question
    key_points = list(question.expected.required_concepts) or None
    return QuestionEnvelope(
        turn_number=turn.turn_number,
        text=question.text,
        kind=question.kind,
        topic=question.topic,
        difficulty=question.difficulty,
        is_follow_up=question.is_follow_up,
        parent_turn_number=turn.parent_turn_number,
        expected_key_points=key_points,
        timestamp=turn.asked_at,
    ).wire()


def evaluation_envelope(turn_number: int, evaluation: Evaluation) -> Dict[str, Any]:
    return EvaluationEnvelope(
        turn_number=turn_number,
        score=evaluation.overall_score,
        metrics=MetricsEnvelope(**evaluation.metrics()),
        feedback=FeedbackEnvelope(**evaluation.feedback.model_dump()),
        missing_concepts=list(evaluation.missing_concepts),
    ).wire()


def status_envelope(state: SessionState) -> Dict[str, Any]:
    pending = state.pending_turn()
    return StatusEnvelope(
        session_id=state.session_id,
        user_id=state.user_id,
        status=state.status,
        target_role=state.target_role,
        current_difficulty=state.current_difficulty,
        turns_completed=len(state.closed_turns()),
        pending_turn_number=pending.turn_number if pending else None,
        performance_window=list(state.performance_window),
        topics_asked=list(state.topics_asked),
        struggling_topics=list(state.struggling_topics),
        strong_topics=list(state.strong_topics),
        degraded=state.degraded,
        final_report=state.final_report,
    ).wire()


__all__ = [
    "CamelModel",
    "EvaluationEnvelope",
    "EventName",
    "EventSink",
    "QuestionEnvelope",
    "ServerEvent",
    "StatusEnvelope",
    "evaluation_envelope",
    "question_envelope",
    "status_envelope",
]
