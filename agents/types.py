"""Shared type definitions for agents."""
from __future__ import annotations

import datetime as dt
import hashlib
import json
import uuid
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agents.skill_index import normalize_all, normalize_token

Difficulty = Literal["easy", "medium", "hard"]
QuestionKind = Literal["technical", "behavioral", "situational", "system-design", "coding-conceptual"]
FocusKind = Literal[
    "skill-validation",
    "gap-probe",
    "requirement-check",
    "follow-up",
    "behavioral-general",
    "reinforce",
]
StructureFeature = Literal["definition", "example", "use_case", "trade_off", "comparison"]
MetricKey = Literal["clarity", "relevance", "depth", "structure", "technical_accuracy"]
GapKind = Literal[
    "knowledge-gap",
    "explanation-gap",
    "depth-gap",
    "application-gap",
    "resume-missing",
    "interview-missing",
]
Severity = Literal["critical", "high", "medium", "low"]
GapStatus = Literal["identified", "in-progress", "improved", "closed"]
QuestionOrigin = Literal["oracle", "template"]

METRIC_KEYS: Tuple[MetricKey, ...] = ("clarity", "relevance", "depth", "structure", "technical_accuracy")
SEVERITY_RANK: Dict[str, int] = {"low": 1, "medium": 2, "high": 3, "critical": 4}
GAP_STATUS_ORDER: Tuple[GapStatus, ...] = ("identified", "in-progress", "improved", "closed")
OPEN_GAP_STATUSES: Tuple[GapStatus, ...] = ("identified", "in-progress", "improved")


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ExpectedComponents(BaseModel):
    """Scoring contract attached to a question."""

    model_config = ConfigDict(frozen=True)

    required_concepts: Tuple[str, ...] = ()
    optional_concepts: Tuple[str, ...] = ()
    key_terms: Tuple[str, ...] = ()
    depth_indicators: Tuple[str, ...] = ()
    ideal_structure: Tuple[StructureFeature, ...] = ()

    @field_validator("required_concepts", "optional_concepts", "key_terms", "depth_indicators", mode="before")
    @classmethod
    def _normalize_tokens(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        return tuple(normalize_all(value))

    @field_validator("ideal_structure", mode="before")
    @classmethod
    def _dedupe_structure(cls, value):
        if value is None:
            return ()
        if isinstance(value, dict):
            value = [key for key, wanted in value.items() if wanted]
        seen: List[str] = []
        for item in value:
            feature = str(item).strip().lower().replace("-", "_").replace(" ", "_")
            if feature == "usecase":
                feature = "use_case"
            elif feature == "tradeoff":
                feature = "trade_off"
            if feature not in seen:
                seen.append(feature)
        return tuple(seen)

    @property
    def is_empty(self) -> bool:
        return not self.required_concepts and not self.optional_concepts


class Question(BaseModel):
    """Immutable question record; identity is the content hash."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1)
    kind: QuestionKind = "technical"
    difficulty: Difficulty = "medium"
    topic: str
    focus_kind: FocusKind
    expected: ExpectedComponents = Field(default_factory=ExpectedComponents)
    parent_hash: Optional[str] = None
    suggested_follow_ups: Tuple[str, ...] = ()
    origin: QuestionOrigin = "oracle"

    @field_validator("topic", mode="before")
    @classmethod
    def _normalize_topic(cls, value):
        return normalize_token(value) or "general"

    @property
    def question_hash(self) -> str:
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]

    @property
    def is_follow_up(self) -> bool:
        return self.focus_kind == "follow-up"


class Focus(BaseModel):
    kind: FocusKind
    topic: str
    severity: Optional[Severity] = None


class ConceptExtraction(BaseModel):
    """Extraction-only oracle reply; never carries a judgement."""

    concepts: List[str] = Field(default_factory=list)
    technical_terms: List[str] = Field(default_factory=list)
    examples: List[str] = Field(default_factory=list)
    comparisons: List[str] = Field(default_factory=list)


class DetectedGap(BaseModel):
    skill: str
    kind: GapKind
    severity: Severity


class Feedback(BaseModel):
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    score_breakdown: Dict[str, str] = Field(default_factory=dict)


class Evaluation(BaseModel):
    clarity: int = Field(ge=0, le=100)
    relevance: int = Field(ge=0, le=100)
    depth: int = Field(ge=0, le=100)
    structure: int = Field(ge=0, le=100)
    technical_accuracy: int = Field(ge=0, le=100)
    overall_score: int = Field(ge=0, le=100)
    detected_concepts: List[str] = Field(default_factory=list)
    missing_concepts: List[str] = Field(default_factory=list)
    feedback: Feedback = Field(default_factory=Feedback)
    follow_up_needed: bool = False
    gaps: List[DetectedGap] = Field(default_factory=list)
    degraded: bool = False

    def metrics(self) -> Dict[str, int]:
        return {key: getattr(self, key) for key in METRIC_KEYS}


class ExperienceEntry(BaseModel):
    title: str
    company: str = ""


class ResumeView(BaseModel):
    skills: List[str] = Field(default_factory=list)
    experience: List[ExperienceEntry] = Field(default_factory=list)
    summary: Optional[str] = None


class JobView(BaseModel):
    title: str
    required_skills: List[str] = Field(default_factory=list)
    preferred_skills: List[str] = Field(default_factory=list)
    responsibilities: List[str] = Field(default_factory=list)


class ResumeEvidence(BaseModel):
    present: bool = False


class JdEvidence(BaseModel):
    required: bool = False
    preferred: bool = False


class InterviewEvidence(BaseModel):
    asked: bool = False
    session_ids: List[str] = Field(default_factory=list)
    turn_numbers: List[int] = Field(default_factory=list)
    missed_concepts: List[str] = Field(default_factory=list)
    feedback: List[str] = Field(default_factory=list)


class GapEvidence(BaseModel):
    from_resume: Optional[ResumeEvidence] = None
    from_jd: Optional[JdEvidence] = None
    from_interview: Optional[InterviewEvidence] = None

    def merged(self, other: "GapEvidence") -> "GapEvidence":  # Union of both evidence records
        resume = self.from_resume
        if other.from_resume is not None:
            present = other.from_resume.present or (resume.present if resume else False)
            resume = ResumeEvidence(present=present)
        jd = self.from_jd
        if other.from_jd is not None:
            jd = JdEvidence(
                required=other.from_jd.required or (jd.required if jd else False),
                preferred=other.from_jd.preferred or (jd.preferred if jd else False),
            )
        interview = self.from_interview
        if other.from_interview is not None:
            if interview is None:
                interview = other.from_interview.model_copy(deep=True)
            else:
                interview = InterviewEvidence(
                    asked=interview.asked or other.from_interview.asked,
                    session_ids=_ordered_union(interview.session_ids, other.from_interview.session_ids),
                    turn_numbers=_ordered_union(interview.turn_numbers, other.from_interview.turn_numbers),
                    missed_concepts=_ordered_union(interview.missed_concepts, other.from_interview.missed_concepts),
                    feedback=_ordered_union(interview.feedback, other.from_interview.feedback),
                )
        return GapEvidence(from_resume=resume, from_jd=jd, from_interview=interview)


class Gap(BaseModel):
    gap_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    user_id: str
    skill: str
    kind: GapKind
    severity: Severity
    evidence: GapEvidence = Field(default_factory=GapEvidence)
    status: GapStatus = "identified"
    detected_at: dt.datetime = Field(default_factory=utcnow)
    closed_at: Optional[dt.datetime] = None

    @field_validator("skill", mode="before")
    @classmethod
    def _normalize_skill(cls, value):
        token = normalize_token(value)
        if not token:
            raise ValueError("gap skill must not be empty")
        return token

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_GAP_STATUSES


class IdentifiedGap(BaseModel):
    """Session-local view of a gap used for focus selection."""

    skill: str
    kind: GapKind
    severity: Severity
    priority: int = Field(ge=1, le=10)


def _ordered_union(left, right) -> list:
    merged = list(left)
    for item in right:
        if item not in merged:
            merged.append(item)
    return merged


__all__ = [
    "ConceptExtraction",
    "DetectedGap",
    "Difficulty",
    "Evaluation",
    "ExpectedComponents",
    "ExperienceEntry",
    "Feedback",
    "Focus",
    "FocusKind",
    "GAP_STATUS_ORDER",
    "Gap",
    "GapEvidence",
    "GapKind",
    "GapStatus",
    "IdentifiedGap",
    "InterviewEvidence",
    "JdEvidence",
    "JobView",
    "METRIC_KEYS",
    "MetricKey",
    "OPEN_GAP_STATUSES",
    "Question",
    "QuestionKind",
    "QuestionOrigin",
    "ResumeEvidence",
    "ResumeView",
    "SEVERITY_RANK",
    "Severity",
    "StructureFeature",
    "utcnow",
]
