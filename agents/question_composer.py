from __future__ import annotations  # Question composition: focus selection, cache reuse, oracle generation, fallbacks

import logging
import random
from typing import TYPE_CHECKING, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from agents import prompts
from agents.skill_index import normalize_all, normalize_token
from agents.types import (
    ExpectedComponents,
    Focus,
    JobView,
    Question,
    ResumeView,
)
from llm_gateway import LlmGatewayError, OracleGateway
from observability import log_event, span
from services.question_cache import QuestionCache

if TYPE_CHECKING:  # pragma: no cover
    from interview_session.state import SessionState, Turn

logger = logging.getLogger(__name__)  # Module logger

GENERAL_TOPIC = "general"  # Topic used when nothing specific is left to probe
FOLLOW_UP_THRESHOLD = 60  # Follow-ups only below this overall score

FALLBACK_TEMPLATES = {  # Templated questions used when the oracle is unavailable
    "gap-probe": "Can you explain your understanding of {topic}?",
    "skill-validation": "Describe your experience working with {topic}.",
    "requirement-check": "How would you apply {topic} in a real-world scenario?",
    "behavioral-general": "Tell me about a time when you demonstrated {topic}.",
    "reinforce": "Let's dive deeper into {topic}. Can you provide more detail?",
}
FALLBACK_FOLLOW_UP = "Can you elaborate on {concept}?"  # Follow-up fallback keyed on first missing concept

HINT_CONCEPT = "Consider discussing: {concept}"
HINT_SEQUENCE = (
    "Try including a specific example to illustrate your point",
    "Discuss the trade-offs or alternatives for this approach",
    "Structure your answer: explain the concept, provide an example, and discuss use cases",
)

_KNOWN_KINDS = {"technical", "behavioral", "situational", "system-design", "coding-conceptual"}


class GeneratedQuestion(BaseModel):  # LLM-enforced question payload
    question: str = Field(min_length=1)
    kind: str = "technical"
    required_concepts: List[str] = Field(default_factory=list)
    optional_concepts: List[str] = Field(default_factory=list)
    key_terms: List[str] = Field(default_factory=list)
    depth_indicators: List[str] = Field(default_factory=list)
    ideal_structure: List[str] = Field(default_factory=list)
    suggested_follow_ups: List[str] = Field(default_factory=list)

    @field_validator("question")
    @classmethod
    def _strip_question(cls, value: str) -> str:  # Blank text is a schema violation
        text = value.strip()
        if not text:
            raise ValueError("question text is blank")
        return text

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value):  # Unknown kinds collapse to technical
        text = str(value or "").strip().lower().replace("_", "-").replace(" ", "-")
        return text if text in _KNOWN_KINDS else "technical"


def choose_focus(state: "SessionState", rng: random.Random, reinforce_probability: float) -> Focus:
    """First matching rule wins: reinforce, gap-probe, skill, requirement, behavioral."""

    asked = set(state.topics_asked)
    if state.struggling_topics and rng.random() < reinforce_probability:
        return Focus(kind="reinforce", topic=state.struggling_topics[0])
    for gap in state.identified_gaps:
        if gap.skill not in asked:
            return Focus(kind="gap-probe", topic=gap.skill, severity=gap.severity)
    for skill in state.candidate_skills:
        if skill not in asked:
            return Focus(kind="skill-validation", topic=skill)
    for skill in state.required_skills:
        if skill not in asked:
            return Focus(kind="requirement-check", topic=skill)
    return Focus(kind="behavioral-general", topic=GENERAL_TOPIC)


def fallback_question(focus: Focus, difficulty: str) -> Question:
    template = FALLBACK_TEMPLATES.get(focus.kind, FALLBACK_TEMPLATES["skill-validation"])
    return Question(
        text=template.format(topic=focus.topic),
        kind="behavioral" if focus.kind == "behavioral-general" else "technical",
        difficulty=difficulty,
        topic=focus.topic,
        focus_kind=focus.kind,
        expected=ExpectedComponents(required_concepts=[focus.topic]),
        origin="template",
    )


def hint_for(question: Question, hints_used: int) -> str:
    """Deterministic hint: rotate through required concepts, then generic cues."""

    concepts = list(question.expected.required_concepts)
    if hints_used < len(concepts):
        return HINT_CONCEPT.format(concept=concepts[hints_used])
    index = min(hints_used - len(concepts), len(HINT_SEQUENCE) - 1)
    return HINT_SEQUENCE[index]


class QuestionComposer:  # Chooses the next focus and produces a question for it
    def __init__(
        self,
        gateway: OracleGateway,
        cache: QuestionCache,
        *,
        rng: Optional[random.Random] = None,
        reinforce_probability: float = 0.35,
        temperature: float = 0.7,
        max_tokens: int = 600,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._rng = rng or random.Random()
        self._reinforce_probability = reinforce_probability
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def cache(self) -> QuestionCache:
        return self._cache

    def choose_focus(self, state: "SessionState") -> Focus:
        return choose_focus(state, self._rng, self._reinforce_probability)

    async def compose(self, state: "SessionState", resume: ResumeView, job: Optional[JobView]) -> Question:
        focus = self.choose_focus(state)
        difficulty = state.current_difficulty
        cached = self._cache.lookup(focus.kind, focus.topic, difficulty, excluding=state.asked_hashes())
        if cached is not None:
            self._cache.record_use(cached.question_hash)
            logger.info("Question cache hit session=%s focus=%s topic=%s", state.session_id, focus.kind, focus.topic)
            return cached
        generated = await self._generate(state, focus, resume, job)
        if generated is None:
            log_event("oracle.fallback", state.session_id, purpose="question", decision=focus.kind)
            return fallback_question(focus, difficulty)
        question_hash = self._cache.insert(generated)
        self._cache.record_use(question_hash)
        return generated

    async def compose_follow_up(self, parent: "Turn", session_id: str = "") -> Optional[Question]:
        evaluation = parent.evaluation
        if evaluation is None or evaluation.overall_score >= FOLLOW_UP_THRESHOLD:
            return None
        if not evaluation.missing_concepts:
            return None
        parent_question = parent.question
        missing = list(evaluation.missing_concepts)
        text = await self._paraphrase_follow_up(parent_question, parent.answer or "", missing, session_id)
        expected = parent_question.expected
        return Question(
            text=text or FALLBACK_FOLLOW_UP.format(concept=missing[0]),
            kind=parent_question.kind,
            difficulty=parent_question.difficulty,
            topic=parent_question.topic,
            focus_kind="follow-up",
            expected=ExpectedComponents(
                required_concepts=missing,
                optional_concepts=expected.optional_concepts,
                key_terms=expected.key_terms,
                depth_indicators=expected.depth_indicators,
                ideal_structure=expected.ideal_structure,
            ),
            parent_hash=parent_question.question_hash,
            origin="oracle" if text else "template",
        )

    async def _generate(
        self,
        state: "SessionState",
        focus: Focus,
        resume: ResumeView,
        job: Optional[JobView],
    ) -> Optional[Question]:  # Oracle generation; None on any oracle failure
        if not self._gateway.available:
            return None
        experience = [
            f"{entry.title} at {entry.company}" if entry.company else entry.title
            for entry in resume.experience[:2]
        ]
        messages = prompts.question_messages(
            role=state.target_role,
            focus_kind=focus.kind,
            topic=focus.topic,
            severity=focus.severity,
            difficulty=state.current_difficulty,
            experience=experience,
            responsibilities=(job.responsibilities if job else [])[:3],
        )
        try:
            with span(state.session_id, "compose.generate"):
                payload = await self._gateway.structured(
                    messages,
                    GeneratedQuestion,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                    purpose="question",
                )
        except LlmGatewayError as exc:
            logger.warning("Question generation failed session=%s: %s", state.session_id, exc)
            return None
        required = normalize_all(payload.required_concepts) or [focus.topic]
        try:
            return Question(
                text=payload.question,
                kind=payload.kind,
                difficulty=state.current_difficulty,
                topic=focus.topic,
                focus_kind=focus.kind,
                expected=ExpectedComponents(
                    required_concepts=required,
                    optional_concepts=payload.optional_concepts,
                    key_terms=payload.key_terms,
                    depth_indicators=payload.depth_indicators,
                    ideal_structure=[item for item in payload.ideal_structure if _structure_feature(item)],
                ),
                suggested_follow_ups=tuple(item.strip() for item in payload.suggested_follow_ups if item.strip()),
            )
        except ValidationError as exc:
            logger.warning("Generated question rejected session=%s: %s", state.session_id, exc)
            return None

    async def _paraphrase_follow_up(
        self,
        question: Question,
        answer: str,
        missing: List[str],
        session_id: str,
    ) -> Optional[str]:  # One probing sentence, or None to use the template
        if not self._gateway.available:
            log_event("oracle.fallback", session_id, purpose="follow_up")
            return None
        messages = prompts.follow_up_messages(question=question.text, answer=answer, missing=missing)
        try:
            with span(session_id, "compose.follow_up"):
                text = await self._gateway.text(
                    messages,
                    temperature=self._temperature,
                    max_tokens=120,
                    purpose="follow_up",
                )
        except LlmGatewayError as exc:
            logger.warning("Follow-up paraphrase failed session=%s: %s", session_id, exc)
            log_event("oracle.fallback", session_id, purpose="follow_up")
            return None
        return _one_sentence(text)


def _structure_feature(item: str) -> bool:  # Keep only recognised ideal-structure features
    token = normalize_token(item).replace("-", "_").replace(" ", "_")
    return token in {"definition", "example", "use_case", "usecase", "trade_off", "tradeoff", "comparison"}


def _one_sentence(text: str) -> Optional[str]:  # First non-empty line with wrapping quotes removed
    for line in text.splitlines():
        cleaned = line.strip().strip('"').strip()
        if cleaned:
            return cleaned
    return None


__all__ = [
    "FALLBACK_FOLLOW_UP",
    "FALLBACK_TEMPLATES",
    "GeneratedQuestion",
    "QuestionComposer",
    "choose_focus",
    "fallback_question",
    "hint_for",
]
