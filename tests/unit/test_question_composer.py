import asyncio
import random

from agents.answer_evaluator import score
from agents.question_composer import QuestionComposer, choose_focus, fallback_question, hint_for
from agents.types import (
    ConceptExtraction,
    ExpectedComponents,
    ExperienceEntry,
    Focus,
    IdentifiedGap,
    JobView,
    Question,
    ResumeView,
    utcnow,
)
from interview_session.state import SessionState, Turn
from llm_gateway import OracleGateway
from services.question_cache import QuestionCache

RESUME = ResumeView(
    skills=["python"],
    experience=[
        ExperienceEntry(title="Backend Engineer", company="Acme"),
        ExperienceEntry(title="Developer", company="Initech"),
        ExperienceEntry(title="Intern", company="Globex"),
    ],
)
JOB = JobView(
    title="Platform Engineer",
    required_skills=["kubernetes"],
    responsibilities=["Run services", "Own deployments", "Mentor", "On-call"],
)

GENERATED = {
    "question": "How does Kubernetes schedule pods onto nodes?",
    "kind": "system design",
    "required_concepts": ["Scheduler", "node affinity"],
    "optional_concepts": ["taints"],
    "key_terms": ["kube-scheduler"],
    "depth_indicators": ["bin packing"],
    "ideal_structure": ["definition", "example", "nonsense"],
    "suggested_follow_ups": ["What about preemption?"],
}


def _state(**fields) -> SessionState:
    base = {"session_id": "s1", "user_id": "u1", "target_role": "Platform Engineer"}
    base.update(fields)
    return SessionState(**base)


def _gap(skill: str, severity: str = "high") -> IdentifiedGap:
    return IdentifiedGap(skill=skill, kind="knowledge-gap", severity=severity, priority=10)


def _composer(oracle=None, cache=None, **kwargs) -> QuestionComposer:
    gateway = OracleGateway(oracle, retry_base_delay_s=0.0)
    return QuestionComposer(gateway, cache or QuestionCache(), rng=random.Random(1), **kwargs)


def test_focus_rules_in_priority_order():
    rng = random.Random(0)
    state = _state(
        struggling_topics=["sql"],
        identified_gaps=[_gap("kubernetes")],
        candidate_skills=["python"],
        required_skills=["terraform"],
    )
    assert choose_focus(state, rng, 1.0) == Focus(kind="reinforce", topic="sql")
    assert choose_focus(state, rng, 0.0) == Focus(kind="gap-probe", topic="kubernetes", severity="high")

    state.topics_asked = ["kubernetes"]
    assert choose_focus(state, rng, 0.0) == Focus(kind="skill-validation", topic="python")

    state.topics_asked.append("python")
    assert choose_focus(state, rng, 0.0) == Focus(kind="requirement-check", topic="terraform")

    state.topics_asked.append("terraform")
    assert choose_focus(state, rng, 0.0) == Focus(kind="behavioral-general", topic="general")


def test_gap_probe_selection_without_oracle():
    composer = _composer()
    state = _state(identified_gaps=[_gap("kubernetes")])
    question = asyncio.run(composer.compose(state, RESUME, JOB))
    assert question.focus_kind == "gap-probe"
    assert question.topic == "kubernetes"
    assert question.text == "Can you explain your understanding of kubernetes?"
    assert question.expected.required_concepts == ("kubernetes",)
    assert question.origin == "template"
    assert len(composer.cache) == 0


def test_fallback_templates_per_focus():
    assert fallback_question(Focus(kind="skill-validation", topic="go"), "easy").text == (
        "Describe your experience working with go."
    )
    assert fallback_question(Focus(kind="requirement-check", topic="sql"), "easy").text == (
        "How would you apply sql in a real-world scenario?"
    )
    behavioral = fallback_question(Focus(kind="behavioral-general", topic="general"), "medium")
    assert behavioral.kind == "behavioral"
    assert behavioral.text == "Tell me about a time when you demonstrated general."
    reinforce = fallback_question(Focus(kind="reinforce", topic="sql"), "easy")
    assert reinforce.text == "Let's dive deeper into sql. Can you provide more detail?"


def test_generated_question_is_cached_and_prompted_with_context(fake_oracle):
    oracle = fake_oracle(question=GENERATED)
    composer = _composer(oracle)
    state = _state(identified_gaps=[_gap("kubernetes")], current_difficulty="hard")
    question = asyncio.run(composer.compose(state, RESUME, JOB))

    assert question.text == GENERATED["question"]
    assert question.kind == "system-design"
    assert question.topic == "kubernetes"
    assert question.difficulty == "hard"
    assert question.expected.required_concepts == ("scheduler", "node affinity")
    assert question.expected.ideal_structure == ("definition", "example")
    assert question.origin == "oracle"
    assert question.question_hash in composer.cache
    assert composer.cache.stats(question.question_hash).uses == 1

    prompt = oracle.calls[0]["messages"][-1]["content"]
    assert "Platform Engineer" in prompt
    assert "gap-probe on kubernetes (gap severity: high)" in prompt
    assert "Developer at Initech" in prompt
    assert "Intern at Globex" not in prompt
    assert "Mentor" in prompt
    assert "On-call" not in prompt
    assert oracle.calls[0]["json_schema"] is not None


def test_cache_hit_reuses_contract_across_sessions(fake_oracle):
    oracle = fake_oracle(question=[GENERATED])
    cache = QuestionCache()
    composer = _composer(oracle, cache)
    first = asyncio.run(composer.compose(_state(session_id="a", identified_gaps=[_gap("kubernetes")]), RESUME, JOB))
    second = asyncio.run(composer.compose(_state(session_id="b", identified_gaps=[_gap("kubernetes")]), RESUME, JOB))

    assert second == first
    assert second.expected == first.expected
    assert oracle.purposes() == ["question"]
    assert cache.stats(first.question_hash).uses == 2


def test_asked_questions_are_excluded_from_cache_lookup(fake_oracle):
    cache = QuestionCache()
    cached = Question(
        text="Cached kubernetes question",
        topic="kubernetes",
        focus_kind="gap-probe",
        expected=ExpectedComponents(required_concepts=["kubernetes"]),
    )
    cache.insert(cached)
    state = _state(identified_gaps=[_gap("kubernetes")])
    state.ask(cached)
    state.turns[0].evaluation = score(cached, "answer", ConceptExtraction())
    oracle = fake_oracle(question=GENERATED)
    question = asyncio.run(_composer(oracle, cache).compose(state, RESUME, JOB))
    assert question != cached
    assert oracle.purposes() == ["question"]


def test_oracle_failure_falls_back(fake_oracle):
    oracle = fake_oracle(question=RuntimeError("quota"))
    question = asyncio.run(_composer(oracle).compose(_state(candidate_skills=["python"]), RESUME, JOB))
    assert question.focus_kind == "skill-validation"
    assert question.text == "Describe your experience working with python."
    assert len(oracle.calls) == 2


def test_blank_generated_question_falls_back(fake_oracle):
    oracle = fake_oracle(question={"question": "   ", "required_concepts": ["kubernetes"]})
    question = asyncio.run(_composer(oracle).compose(_state(candidate_skills=["python"]), RESUME, JOB))
    assert question.origin == "template"
    assert question.text == "Describe your experience working with python."
    assert len(oracle.calls) == 2


def test_blank_required_concepts_default_to_focus_topic(fake_oracle):
    oracle = fake_oracle(question={"question": "What is a pod?", "required_concepts": ["", "   "]})
    question = asyncio.run(_composer(oracle).compose(_state(candidate_skills=["python"]), RESUME, JOB))
    assert question.origin == "oracle"
    assert question.expected.required_concepts == ["python"]


def _closed_turn(answer: str, concepts, required) -> Turn:
    question = Question(
        text="How would you speed up this query?",
        topic="databases",
        focus_kind="skill-validation",
        expected=ExpectedComponents(required_concepts=required),
    )
    evaluation = score(question, answer, ConceptExtraction(concepts=concepts))
    return Turn(turn_number=1, question=question, asked_at=utcnow(), answer=answer, evaluation=evaluation)


def test_follow_up_paraphrased_by_oracle(fake_oracle):
    oracle = fake_oracle(follow_up='"How would an index change the query plan?"\nextra line')
    parent = _closed_turn("I would add caching.", ["caching"], ["indexing", "query-plan"])
    follow_up = asyncio.run(_composer(oracle).compose_follow_up(parent, "s1"))

    assert follow_up is not None
    assert follow_up.text == "How would an index change the query plan?"
    assert follow_up.focus_kind == "follow-up"
    assert follow_up.parent_hash == parent.question.question_hash
    assert follow_up.topic == "databases"
    assert follow_up.expected.required_concepts == ("indexing", "query-plan")
    prompt = oracle.calls[0]["messages"][-1]["content"]
    assert "Missing Concepts: indexing, query-plan" in prompt
    assert "I would add caching." in prompt


def test_follow_up_fallback_references_parent():
    parent = _closed_turn("I would add caching.", ["caching"], ["indexing", "query-plan"])
    follow_up = asyncio.run(_composer().compose_follow_up(parent, "s1"))
    assert follow_up.text == "Can you elaborate on indexing?"
    assert follow_up.parent_hash == parent.question.question_hash
    assert follow_up.origin == "template"


def test_no_follow_up_when_score_high_or_nothing_missing():
    good = _closed_turn(
        "An index is a sorted structure. For example, a b-tree index changes the query-plan. "
        "However, it slows writes, compared to no index. Therefore, use it wisely.",
        ["indexing", "query-plan"],
        ["indexing", "query-plan"],
    )
    assert good.evaluation.overall_score >= 60
    assert asyncio.run(_composer().compose_follow_up(good)) is None

    nothing_missing = _closed_turn("caching", ["caching"], [])
    assert nothing_missing.evaluation.missing_concepts == []
    assert asyncio.run(_composer().compose_follow_up(nothing_missing)) is None


def test_hints_rotate_through_concepts_then_generic_advice():
    question = Question(
        text="Explain caching",
        topic="caching",
        focus_kind="skill-validation",
        expected=ExpectedComponents(required_concepts=["ttl", "eviction"]),
    )
    hints = [hint_for(question, used) for used in range(6)]
    assert hints[:2] == ["Consider discussing: ttl", "Consider discussing: eviction"]
    assert hints[2] == "Try including a specific example to illustrate your point"
    assert hints[3] == "Discuss the trade-offs or alternatives for this approach"
    assert hints[4] == hints[5]
