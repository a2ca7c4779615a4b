from __future__ import annotations  # Per-interview session machine: turns, rolling window, adaptation, termination

import datetime as dt
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, Field

from agents.skill_index import has_fuzzy
from agents.types import Difficulty, Evaluation, IdentifiedGap, Question, utcnow
from flow_manager.errors import StateViolation

SessionStatus = Literal["active", "paused", "completed", "terminated"]

SCHEMA_VERSION = 1  # Bump only for additive changes
WINDOW_SIZE = 10  # Performance window length
RECENT_SPAN = 3  # Scores considered for difficulty and the give-more-chances rule
HARD_THRESHOLD = 85
MEDIUM_THRESHOLD = 60
STRUGGLING_BELOW = 60
STRONG_AT = 80
CRITICAL_FALLBACK_LIMIT = 10  # Candidate skills used when the job lists none


class Turn(BaseModel):  # One asked question and, once closed, its answer and evaluation
    turn_number: int = Field(ge=1)
    question: Question
    asked_at: dt.datetime
    answer: Optional[str] = None
    answered_at: Optional[dt.datetime] = None
    time_spent: Optional[float] = None
    media_ref: Optional[str] = None
    evaluation: Optional[Evaluation] = None
    hints_used: int = Field(default=0, ge=0)
    parent_turn_number: Optional[int] = None

    @property
    def is_pending(self) -> bool:
        return self.evaluation is None

    @property
    def question_hash(self) -> str:
        return self.question.question_hash


class SessionState(BaseModel):  # Durable session record; owned by one handler at a time
    schema_version: int = SCHEMA_VERSION
    session_id: str
    user_id: str
    target_role: str = ""
    interview_kind: str = "technical"
    resume_id: str = ""
    job_id: Optional[str] = None
    candidate_skills: List[str] = Field(default_factory=list)
    required_skills: List[str] = Field(default_factory=list)
    preferred_skills: List[str] = Field(default_factory=list)
    identified_gaps: List[IdentifiedGap] = Field(default_factory=list)
    turns: List[Turn] = Field(default_factory=list)
    topics_asked: List[str] = Field(default_factory=list)
    skills_probed: List[str] = Field(default_factory=list)
    struggling_topics: List[str] = Field(default_factory=list)
    strong_topics: List[str] = Field(default_factory=list)
    performance_window: List[int] = Field(default_factory=list)
    current_difficulty: Difficulty = "medium"
    status: SessionStatus = "active"
    started_at: dt.datetime = Field(default_factory=utcnow)
    last_activity_at: dt.datetime = Field(default_factory=utcnow)
    recorded_gap_ids: List[str] = Field(default_factory=list)
    degraded: bool = False
    final_report: Optional[Dict[str, Any]] = None

    def pending_turn(self) -> Optional[Turn]:
        if self.turns and self.turns[-1].is_pending:
            return self.turns[-1]
        return None

    def closed_turns(self) -> List[Turn]:
        return [turn for turn in self.turns if not turn.is_pending]

    def asked_hashes(self) -> Set[str]:
        return {turn.question_hash for turn in self.turns}

    def find_turn(self, turn_number: int) -> Optional[Turn]:
        for turn in self.turns:
            if turn.turn_number == turn_number:
                return turn
        return None

    def touch(self, now: Optional[dt.datetime] = None) -> None:
        self.last_activity_at = now or utcnow()

    def ask(
        self,
        question: Question,
        now: Optional[dt.datetime] = None,
        *,
        parent_turn_number: Optional[int] = None,
    ) -> Turn:  # Append a pending turn; only one may be pending
        if self.pending_turn() is not None:
            raise StateViolation("a question is already pending", session_id=self.session_id)
        now = now or utcnow()
        turn = Turn(
            turn_number=len(self.turns) + 1,
            question=question,
            asked_at=now,
            parent_turn_number=parent_turn_number,
        )
        self.turns.append(turn)
        self.touch(now)
        return turn

    def record_answer(
        self,
        answer: str,
        *,
        time_spent: Optional[float] = None,
        media_ref: Optional[str] = None,
        now: Optional[dt.datetime] = None,
    ) -> Turn:
        turn = self.pending_turn()
        if turn is None:
            raise StateViolation("no pending question", session_id=self.session_id)
        now = now or utcnow()
        turn.answer = answer
        turn.answered_at = now
        turn.time_spent = time_spent
        turn.media_ref = media_ref
        self.touch(now)
        return turn

    def close_turn(
        self,
        evaluation: Evaluation,
        now: Optional[dt.datetime] = None,
        *,
        window_size: int = WINDOW_SIZE,
    ) -> Turn:
        """Attach ``evaluation`` to the pending turn and adapt the session."""

        turn = self.pending_turn()
        if turn is None:
            raise StateViolation("no pending question", session_id=self.session_id)
        turn.evaluation = evaluation
        score = evaluation.overall_score

        self.performance_window.append(score)
        if len(self.performance_window) > window_size:
            del self.performance_window[: len(self.performance_window) - window_size]
        self.current_difficulty = difficulty_for(self.recent_average())

        topic = turn.question.topic
        if score < STRUGGLING_BELOW and topic not in self.strong_topics and topic not in self.struggling_topics:
            self.struggling_topics.append(topic)
        if score >= STRONG_AT:
            if topic not in self.strong_topics:
                self.strong_topics.append(topic)
            if topic in self.struggling_topics:
                self.struggling_topics.remove(topic)

        self.topics_asked.append(topic)
        if topic not in self.skills_probed:
            self.skills_probed.append(topic)
        self.touch(now)
        return turn

    def recent_average(self) -> Optional[float]:
        recent = self.performance_window[-RECENT_SPAN:]
        if not recent:
            return None
        return sum(recent) / len(recent)

    def critical_skills(self) -> List[str]:
        if self.required_skills:
            return list(self.required_skills)
        return list(self.candidate_skills[:CRITICAL_FALLBACK_LIMIT])

    def should_stop(self, max_turns: int = 15, min_turns: int = 5) -> bool:
        count = len(self.turns)
        if count >= max_turns:
            return True
        if count < min_turns:
            return False
        critical = self.critical_skills()
        probed = sum(1 for skill in critical if has_fuzzy(self.skills_probed, skill))
        if 2 * probed < len(critical):
            return False
        recent = self.recent_average()
        if recent is not None and recent < MEDIUM_THRESHOLD and count < 10:
            return False
        return True

    def is_idle_expired(self, now: dt.datetime, grace: dt.timedelta) -> bool:
        if self.status not in ("active", "paused"):
            return False
        return now - self.last_activity_at > grace

    def pause(self) -> None:
        if self.status != "active":
            raise StateViolation(f"cannot pause a {self.status} session", session_id=self.session_id)
        self.status = "paused"

    def resume(self) -> None:
        if self.status != "paused":
            raise StateViolation(f"cannot resume a {self.status} session", session_id=self.session_id)
        self.status = "active"

    def complete(self) -> None:
        if self.status not in ("active", "paused"):
            raise StateViolation(f"cannot complete a {self.status} session", session_id=self.session_id)
        self.status = "completed"

    def terminate(self) -> None:
        if self.status not in ("active", "paused"):
            raise StateViolation(f"cannot terminate a {self.status} session", session_id=self.session_id)
        self.status = "terminated"

    @property
    def is_finished(self) -> bool:
        return self.status in ("completed", "terminated")


def difficulty_for(recent_average: Optional[float]) -> Difficulty:
    if recent_average is None:
        return "medium"
    if recent_average >= HARD_THRESHOLD:
        return "hard"
    if recent_average >= MEDIUM_THRESHOLD:
        return "medium"
    return "easy"


__all__ = ["SCHEMA_VERSION", "SessionState", "SessionStatus", "Turn", "WINDOW_SIZE", "difficulty_for"]
