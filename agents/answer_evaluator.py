"""Rule-based answer scoring.

The language oracle is only asked to *extract* what the candidate mentioned;
every number below comes from fixed formulas so that the same question,
answer and extraction always produce the same evaluation.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from agents import prompts
from agents.skill_index import has_fuzzy, matched, missing, normalize_all, union
from agents.types import ConceptExtraction, DetectedGap, Evaluation, Feedback, Question
from llm_gateway import LlmGatewayError, OracleGateway

logger = logging.getLogger(__name__)

FILLER_WORDS = ("um", "uh", "like", "kinda", "sorta", "basically")
FILLER_PHRASES = ("you know",)
FLOW_WORDS = frozenset({"first", "second", "then", "next", "finally", "because", "therefore", "so"})

STRENGTH_BAND = 80
WEAKNESS_BAND = 60
FOLLOW_UP_SCORE = 60

WEIGHTS = {"clarity": 20, "relevance": 25, "depth": 25, "structure": 15, "technical_accuracy": 15}

_SENTENCE_SPLIT = re.compile(r"[.!?]+(?:\s+|$)")
_WORD_STRIP = ".,;:!?\"'`()[]{}"
_INTRO_CUE = re.compile(r"\b(let me explain|essentially|in short)\b")
_CONCLUSION_CUE = re.compile(r"^(so|therefore|in summary|overall)\b")
_EXAMPLE_CUE = re.compile(r"\bexample\b|\bfor instance\b|\bsuch as\b|\blike when\b")
_COMPARISON_CUE = re.compile(r"\bcompared to\b|\bversus\b|\bwhereas\b|\bwhile\b")
_TRADE_OFF_CUE = re.compile(r"\btrade|\bhowever\b|\bbut\b|\bon the other hand\b")
_DEFINITION_CUE = re.compile(r"\bis an?\b|\brefers to\b|\bmeans\b|\bdefined as\b")
_USE_CASE_CUE = re.compile(r"\buse cases?\b|\bused (for|when)\b|\buseful for\b|\bin practice\b")

METRIC_TEMPLATES: Dict[str, Tuple[str, str, str]] = {
    "clarity": (
        "Clear and concise communication",
        "Answer lacks clarity",
        'Structure your answer with clear sentences. Avoid filler words like "um", "uh", "like".',
    ),
    "relevance": (
        "Directly addressed the question",
        "Answer did not fully address the question",
        "Make sure to cover: {required}",
    ),
    "depth": (
        "Demonstrated deep understanding with examples",
        "Explanation lacked depth",
        "Include specific examples, use cases, or real-world applications.",
    ),
    "structure": (
        "Well-organized answer with logical flow",
        "Answer was disorganized",
        "Structure your answer: introduce the concept, explain with examples, conclude with key takeaways.",
    ),
    "technical_accuracy": (
        "Technically accurate explanation",
        "Some technical inaccuracies detected",
        "Review core concepts and ensure terminology is used correctly.",
    ),
}

GAP_SUGGESTIONS = {
    "knowledge-gap": "Study the concept: {skill}",
    "explanation-gap": "Practice explaining concepts out loud before the interview",
    "depth-gap": "Go beyond definitions: add examples, trade-offs and real-world use cases.",
}

BREAKDOWN_KEYS = {
    "clarity": "clarity",
    "relevance": "relevance",
    "depth": "depth",
    "structure": "structure",
    "technical_accuracy": "technicalAccuracy",
}


@dataclass(frozen=True)
class AnswerFeatures:
    """Surface features of a pre-processed answer."""

    text: str
    words: Tuple[str, ...]
    sentences: Tuple[str, ...]
    filler_count: int
    has_intro: bool
    has_conclusion: bool
    has_definition: bool
    has_example: bool
    has_comparison: bool
    has_trade_off: bool
    has_use_case: bool

    @property
    def word_count(self) -> int:
        return len(self.words)

    @property
    def sentence_count(self) -> int:
        return len(self.sentences)

    @property
    def avg_sentence_length(self) -> float:
        if not self.sentences:
            return 0.0
        return self.word_count / self.sentence_count

    def has_feature(self, feature: str) -> bool:
        return bool(getattr(self, f"has_{feature}", False))


def preprocess(answer: str) -> AnswerFeatures:
    text = " ".join((answer or "").split()).casefold()
    words = tuple(text.split())
    sentences = tuple(part.strip() for part in _SENTENCE_SPLIT.split(text) if part.strip())
    bare = [word.strip(_WORD_STRIP) for word in words]
    filler_count = sum(1 for word in bare if word in FILLER_WORDS)
    filler_count += sum(len(re.findall(rf"\b{re.escape(phrase)}\b", text)) for phrase in FILLER_PHRASES)
    first = sentences[0] if sentences else ""
    last = sentences[-1] if sentences else ""
    return AnswerFeatures(
        text=text,
        words=words,
        sentences=sentences,
        filler_count=filler_count,
        has_intro=bool(first) and (len(first) > 10 or bool(_INTRO_CUE.search(first))),
        has_conclusion=len(sentences) > 1 and bool(_CONCLUSION_CUE.search(last)),
        has_definition=bool(_DEFINITION_CUE.search(text)),
        has_example=bool(_EXAMPLE_CUE.search(text)),
        has_comparison=bool(_COMPARISON_CUE.search(text)),
        has_trade_off=bool(_TRADE_OFF_CUE.search(text)),
        has_use_case=bool(_USE_CASE_CUE.search(text)),
    )


def clarity_score(features: AnswerFeatures) -> int:
    score = 100 - min(features.filler_count * 5, 30)
    if features.word_count < 20:
        score -= 40
    elif features.word_count < 50:
        score -= 20
    if features.avg_sentence_length > 30:
        score -= 15
    if 3 <= features.sentence_count <= 8:
        score += 10
    return _clamp(score)


def relevance_score(question: Question, mentioned: List[str]) -> int:
    expected = question.expected
    if expected.is_empty:
        return 70
    required = list(expected.required_concepts)
    optional = list(expected.optional_concepts)
    req_total = max(1, len(required))
    opt_total = max(1, len(optional))
    req_hit = len(matched(required, mentioned)) if required else req_total
    opt_hit = len(matched(optional, mentioned)) if optional else opt_total
    numerator = 80 * req_hit * opt_total + 20 * opt_hit * req_total
    return _clamp(_ratio(numerator, req_total * opt_total))


def depth_score(question: Question, features: AnswerFeatures) -> int:
    score = 0
    score += 25 if features.has_example else 0
    score += 20 if features.has_comparison else 0
    score += 25 if features.has_trade_off else 0
    score += 15 if features.word_count > 100 else 0
    score += 10 if features.word_count > 150 else 0
    hits = sum(1 for phrase in question.expected.depth_indicators if phrase in features.text)
    score += min(5 * hits, 25)
    for feature in question.expected.ideal_structure:
        if not features.has_feature(feature):
            score -= 10
    return _clamp(score)


def structure_score(features: AnswerFeatures) -> int:
    score = 40
    score += 20 if features.has_intro else 0
    score += 20 if features.has_conclusion else 0
    present = {word.strip(_WORD_STRIP) for word in features.words} & FLOW_WORDS
    score += min(5 * len(present), 20)
    return _clamp(score)


def technical_accuracy_score(question: Question, mentioned: List[str]) -> int:
    if not mentioned:
        return 0
    expected = question.expected
    if expected.is_empty:
        return 80
    reference = union(expected.required_concepts, expected.optional_concepts)
    correct = sum(1 for concept in mentioned if has_fuzzy(reference, concept))
    return _clamp(_ratio(100 * correct, len(mentioned)))


def overall_score(metrics: Dict[str, int]) -> int:
    """Weighted sum rounded half-up using integer arithmetic."""

    weighted = sum(WEIGHTS[key] * metrics[key] for key in WEIGHTS)
    return _clamp((weighted + 50) // 100)


def detect_gaps(question: Question, missing_concepts: List[str], metrics: Dict[str, int]) -> List[DetectedGap]:
    gaps = [DetectedGap(skill=concept, kind="knowledge-gap", severity="high") for concept in missing_concepts]
    if metrics["relevance"] >= 60 and metrics["depth"] < 50:
        gaps.append(DetectedGap(skill="articulation", kind="explanation-gap", severity="medium"))
    if metrics["structure"] >= 70 and metrics["depth"] < 50:
        gaps.append(DetectedGap(skill="detailed-understanding", kind="depth-gap", severity="medium"))
    return gaps


def build_feedback(question: Question, metrics: Dict[str, int], gaps: List[DetectedGap]) -> Feedback:
    strengths: List[str] = []
    weaknesses: List[str] = []
    suggestions: List[str] = []
    required = ", ".join(question.expected.required_concepts) or question.topic
    for key in BREAKDOWN_KEYS:
        strength, weakness, suggestion = METRIC_TEMPLATES[key]
        value = metrics[key]
        if value >= STRENGTH_BAND:
            strengths.append(strength)
        elif value < WEAKNESS_BAND:
            weaknesses.append(weakness)
            _append_unique(suggestions, suggestion.format(required=required))
    for gap in gaps:
        template = GAP_SUGGESTIONS.get(gap.kind)
        if template:
            _append_unique(suggestions, template.format(skill=gap.skill))
    breakdown = {BREAKDOWN_KEYS[key]: f"{metrics[key]}/100" for key in BREAKDOWN_KEYS}
    return Feedback(strengths=strengths, weaknesses=weaknesses, suggestions=suggestions, score_breakdown=breakdown)


def mentioned_concepts(extraction: ConceptExtraction) -> List[str]:
    return union(extraction.concepts, extraction.technical_terms)


def score(
    question: Question,
    answer: str,
    extraction: Optional[ConceptExtraction] = None,
    *,
    degraded: bool = False,
) -> Evaluation:
    """Score ``answer`` against ``question``; pure given the extraction."""

    extraction = extraction or ConceptExtraction()
    features = preprocess(answer)
    mentioned = mentioned_concepts(extraction)
    metrics = {
        "clarity": clarity_score(features),
        "relevance": relevance_score(question, mentioned),
        "depth": depth_score(question, features),
        "structure": structure_score(features),
        "technical_accuracy": technical_accuracy_score(question, mentioned),
    }
    missing_concepts = missing(question.expected.required_concepts, mentioned)
    detected = matched(union(question.expected.required_concepts, question.expected.optional_concepts), mentioned)
    gaps = detect_gaps(question, missing_concepts, metrics)
    follow_up = metrics["relevance"] < 50 or metrics["depth"] < 60 or metrics["technical_accuracy"] < 50
    return Evaluation(
        **metrics,
        overall_score=overall_score(metrics),
        detected_concepts=detected,
        missing_concepts=missing_concepts,
        feedback=build_feedback(question, metrics, gaps),
        follow_up_needed=follow_up,
        gaps=gaps,
        degraded=degraded,
    )


class AnswerEvaluator:  # Extraction through the oracle, scoring through fixed formulas
    def __init__(self, gateway: OracleGateway, *, temperature: float = 0.0, max_tokens: int = 400) -> None:
        self._gateway = gateway
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def extract(self, question: Question, answer: str) -> Tuple[ConceptExtraction, bool]:
        """Return the extraction and whether it is degraded (oracle unavailable)."""

        if not answer.strip():
            return ConceptExtraction(), False
        if not self._gateway.available:
            return ConceptExtraction(), True
        messages = prompts.extraction_messages(question=question.text, answer=answer)
        try:
            extraction = await self._gateway.structured(
                messages,
                ConceptExtraction,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                purpose="extraction",
            )
        except LlmGatewayError as exc:
            logger.warning("Concept extraction degraded: %s", exc)
            return ConceptExtraction(), True
        return _clean_extraction(extraction), False

    async def evaluate(self, question: Question, answer: str) -> Evaluation:
        extraction, degraded = await self.extract(question, answer)
        return score(question, answer, extraction, degraded=degraded)

    def score(self, question: Question, answer: str, extraction: Optional[ConceptExtraction] = None) -> Evaluation:
        return score(question, answer, extraction)


def _clean_extraction(extraction: ConceptExtraction) -> ConceptExtraction:
    return ConceptExtraction(
        concepts=normalize_all(extraction.concepts),
        technical_terms=normalize_all(extraction.technical_terms),
        examples=[item.strip() for item in extraction.examples if item.strip()],
        comparisons=[item.strip() for item in extraction.comparisons if item.strip()],
    )


def _ratio(numerator: int, denominator: int) -> int:
    """Integer ``round(numerator / denominator)`` with halves rounded up."""

    return (2 * numerator + denominator) // (2 * denominator)


def _clamp(value: int) -> int:
    return max(0, min(100, int(value)))


def _append_unique(items: List[str], value: str) -> None:
    if value not in items:
        items.append(value)


__all__ = [
    "AnswerEvaluator",
    "AnswerFeatures",
    "build_feedback",
    "clarity_score",
    "depth_score",
    "detect_gaps",
    "mentioned_concepts",
    "overall_score",
    "preprocess",
    "relevance_score",
    "score",
    "structure_score",
    "technical_accuracy_score",
]
