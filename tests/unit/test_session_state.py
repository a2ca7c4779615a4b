import datetime as dt

import pytest

from agents.types import Evaluation, ExpectedComponents, Question
from flow_manager.errors import StateViolation
from interview_session.state import SessionState, difficulty_for


def _question(topic: str, text: str = "") -> Question:
    return Question(
        text=text or f"Tell me about {topic}",
        topic=topic,
        focus_kind="skill-validation",
        expected=ExpectedComponents(required_concepts=[topic]),
    )


def _evaluation(overall: int) -> Evaluation:
    return Evaluation(
        clarity=overall,
        relevance=overall,
        depth=overall,
        structure=overall,
        technical_accuracy=overall,
        overall_score=overall,
    )


def _play(state: SessionState, topic: str, overall: int) -> None:
    state.ask(_question(topic, f"{topic} #{len(state.turns)}"))
    state.record_answer("answer", time_spent=12.0)
    state.close_turn(_evaluation(overall))


def _state(**fields) -> SessionState:
    return SessionState(session_id="s1", user_id="u1", **fields)


def test_initial_state():
    state = _state()
    assert state.status == "active"
    assert state.current_difficulty == "medium"
    assert state.performance_window == []
    assert state.pending_turn() is None


def test_only_one_pending_turn():
    state = _state()
    state.ask(_question("python"))
    with pytest.raises(StateViolation):
        state.ask(_question("sql"))
    assert len(state.turns) == 1


def test_close_without_pending_turn_rejected():
    with pytest.raises(StateViolation):
        _state().close_turn(_evaluation(50))


def test_close_updates_topics_and_window():
    state = _state()
    _play(state, "python", 70)
    assert state.topics_asked == ["python"]
    assert state.skills_probed == ["python"]
    assert len(state.closed_turns()) == len(state.topics_asked)
    assert state.turns[0].answer == "answer"
    assert state.turns[0].time_spent == 12.0


def test_window_keeps_last_ten_scores():
    state = _state()
    for index in range(12):
        _play(state, f"t{index}", 50 + index)
    assert state.performance_window == list(range(52, 62))


def test_difficulty_escalates_and_stays_hard():
    state = _state()
    seen = []
    for index in range(5):
        _play(state, f"topic{index}", 90)
        seen.append(state.current_difficulty)
    assert seen[2] == "hard"
    assert all(level == "hard" for level in seen[2:])


def test_difficulty_thresholds():
    assert difficulty_for(None) == "medium"
    assert difficulty_for(85) == "hard"
    assert difficulty_for(84.9) == "medium"
    assert difficulty_for(60) == "medium"
    assert difficulty_for(59.9) == "easy"


def test_difficulty_uses_mean_of_last_three():
    state = _state()
    for overall in (90, 90, 30):
        _play(state, "x", overall)
    assert state.current_difficulty == "medium"  # mean 70
    _play(state, "x", 20)
    assert state.current_difficulty == "easy"  # mean 46.7


def test_struggling_then_promoted_to_strong():
    state = _state()
    _play(state, "sql", 40)
    assert state.struggling_topics == ["sql"]
    _play(state, "sql", 85)
    assert state.strong_topics == ["sql"]
    assert state.struggling_topics == []
    _play(state, "sql", 30)
    assert "sql" not in state.struggling_topics
    assert not set(state.struggling_topics) & set(state.strong_topics)


def test_should_stop_bounds():
    state = _state(required_skills=["a"])
    for index in range(4):
        _play(state, "a", 90)
    assert state.should_stop() is False
    _play(state, "a", 90)
    assert state.should_stop() is True


def test_turn_fifteen_always_concludes():
    state = _state(required_skills=[f"skill{i}" for i in range(20)])
    for index in range(15):
        _play(state, "unrelated", 10)
    assert state.should_stop() is True


def test_termination_under_coverage():
    required = ["python", "sql", "kubernetes", "docker", "aws", "kafka", "redis", "graphql"]
    state = _state(required_skills=required)
    for topic, overall in zip(["python", "sql", "kubernetes", "docker", "python"], [70, 72, 75, 80, 70]):
        _play(state, topic, overall)
    assert len(state.turns) == 5
    assert state.should_stop() is True


def test_insufficient_coverage_keeps_going():
    state = _state(required_skills=["python", "sql", "kubernetes", "docker"])
    for _ in range(5):
        _play(state, "python", 90)
    assert state.should_stop() is False


def test_low_recent_scores_get_more_chances_before_turn_ten():
    state = _state(candidate_skills=["python"])
    for _ in range(5):
        _play(state, "python", 40)
    assert state.should_stop() is False
    for _ in range(5):
        _play(state, "python", 40)
    assert state.should_stop() is True


def test_critical_skills_fall_back_to_candidate_skills():
    state = _state(candidate_skills=[f"s{i}" for i in range(12)])
    assert state.critical_skills() == [f"s{i}" for i in range(10)]


def test_pause_resume_transitions():
    state = _state()
    state.pause()
    with pytest.raises(StateViolation):
        state.pause()
    state.resume()
    with pytest.raises(StateViolation):
        state.resume()
    state.complete()
    with pytest.raises(StateViolation):
        state.pause()
    with pytest.raises(StateViolation):
        state.terminate()


def test_idle_expiry():
    start = dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)
    state = _state(started_at=start, last_activity_at=start)
    grace = dt.timedelta(hours=24)
    assert not state.is_idle_expired(start + dt.timedelta(hours=23), grace)
    assert state.is_idle_expired(start + dt.timedelta(hours=25), grace)
    state.terminate()
    assert not state.is_idle_expired(start + dt.timedelta(hours=25), grace)


def test_state_round_trips_through_json():
    state = _state(required_skills=["python"])
    _play(state, "python", 77)
    state.ask(_question("sql"))
    restored = SessionState.model_validate_json(state.model_dump_json())
    assert restored == state
    assert restored.pending_turn().question.question_hash == state.pending_turn().question.question_hash
