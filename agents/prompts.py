from __future__ import annotations  # Prompt templates for the language oracle (generation, paraphrase, extraction)

from textwrap import dedent
from typing import Dict, Iterable, List, Sequence

from langchain_core.prompts import ChatPromptTemplate

from llm_gateway import to_chat_messages


QUESTION_GUIDANCE = dedent(  # Generation guardrails; scoring contract comes back as structured fields
    """
    You write one interview question for a live mock interview.
    Ask exactly one question, phrased for the candidate, with no preamble.
    Match the requested difficulty and stay on the requested topic.
    List the concepts a strong answer must mention as required_concepts and nice-to-have ones as optional_concepts.
    depth_indicators are short phrases that signal deep understanding.
    ideal_structure lists the answer features expected: definition, example, use_case, trade_off, comparison.
    Never grade or score anything.
    """
).strip()

FOLLOW_UP_GUIDANCE = dedent(  # Paraphrase-only follow-up instructions
    """
    You are an interviewer asking a follow-up.
    Produce one concise probing sentence that asks the candidate about the missing concepts.
    Do not give the answer away, do not evaluate the candidate, reply with the sentence only.
    """
).strip()

EXTRACTION_GUIDANCE = dedent(  # Extraction-only instructions; quality judgement is out of bounds
    """
    You extract information from an interview answer.
    List the concepts, technical terms, examples and comparisons the candidate actually mentioned.
    Do not judge quality, correctness or completeness, and do not add anything the candidate did not say.
    Use short lowercase phrases.
    """
).strip()

QUESTION_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{instructions}"),
        (
            "human",
            (
                "Target Role: {role}\n"
                "Focus: {focus_kind} on {topic}{severity}\n"
                "Difficulty: {difficulty}\n\n"
                "Candidate Experience:\n{experience}\n\n"
                "Key Responsibilities:\n{responsibilities}\n\n"
                "Return JSON with question, kind, required_concepts, optional_concepts, key_terms, "
                "depth_indicators, ideal_structure and suggested_follow_ups."
            ),
        ),
    ]
)

FOLLOW_UP_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{instructions}"),
        (
            "human",
            (
                "Original Question: {question}\n"
                "Candidate Answer: {answer}\n"
                "Missing Concepts: {missing}\n\n"
                "Write the follow-up question."
            ),
        ),
    ]
)

EXTRACTION_PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{instructions}"),
        (
            "human",
            (
                "Question: {question}\n"
                "Answer: {answer}\n\n"
                "Return JSON with concepts, technical_terms, examples and comparisons."
            ),
        ),
    ]
)


def question_messages(
    *,
    role: str,
    focus_kind: str,
    topic: str,
    severity: str | None,
    difficulty: str,
    experience: Sequence[str],
    responsibilities: Sequence[str],
) -> List[Dict[str, str]]:  # Render the generation prompt (≤2 roles, ≤3 responsibilities)
    return to_chat_messages(
        QUESTION_PROMPT.format_messages(
            instructions=QUESTION_GUIDANCE,
            role=role or "Software Engineer",
            focus_kind=focus_kind,
            topic=topic,
            severity=f" (gap severity: {severity})" if severity else "",
            difficulty=difficulty,
            experience=bullet_list(list(experience)[:2]),
            responsibilities=bullet_list(list(responsibilities)[:3]),
        )
    )


def follow_up_messages(*, question: str, answer: str, missing: Sequence[str]) -> List[Dict[str, str]]:
    return to_chat_messages(
        FOLLOW_UP_PROMPT.format_messages(
            instructions=FOLLOW_UP_GUIDANCE,
            question=question.strip(),
            answer=clamp_text(answer, limit=900) or "(no answer)",
            missing=", ".join(missing),
        )
    )


def extraction_messages(*, question: str, answer: str) -> List[Dict[str, str]]:
    return to_chat_messages(
        EXTRACTION_PROMPT.format_messages(
            instructions=EXTRACTION_GUIDANCE,
            question=question.strip(),
            answer=clamp_text(answer, limit=4000) or "(no answer)",
        )
    )


def bullet_list(items: Iterable[str]) -> str:  # Format items as markdown bullets
    cleaned = [" ".join(str(item).split()) for item in items if str(item).strip()]
    if not cleaned:
        return "(none provided)"
    return "\n".join(f"- {item}" for item in cleaned)


def clamp_text(text: str, *, limit: int) -> str:  # Trim long text for prompt context
    cleaned = " ".join((text or "").split())
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[: limit - 3].rstrip() + "..."


__all__ = [
    "EXTRACTION_PROMPT",
    "FOLLOW_UP_PROMPT",
    "QUESTION_PROMPT",
    "bullet_list",
    "clamp_text",
    "extraction_messages",
    "follow_up_messages",
    "question_messages",
]
