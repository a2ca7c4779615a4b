import logging
import sys

from agents.types import Gap, GapEvidence
from interview_session.state import SessionState
from observability import admin_cli, log_event, span
from observability.logger import human_log_path
from storage.gaps import SqliteGapStore
from storage.sessions import SqliteSessionStore


def test_tail_sessions_and_gaps(capsys, monkeypatch):
    SqliteSessionStore().save(SessionState(session_id="s1", user_id="u1", target_role="Platform Engineer"))
    SqliteGapStore().insert(Gap(user_id="u1", skill="kubernetes", kind="knowledge-gap", severity="high", evidence=GapEvidence()))

    monkeypatch.setattr(sys, "argv", ["admin_cli", "--tail-sessions", "5", "--tail-gaps", "5"])
    admin_cli.main()
    out = capsys.readouterr().out
    assert "s1 user=u1 role=Platform Engineer status=active difficulty=medium turns=0" in out
    assert "u1 kubernetes -> knowledge-gap/high status=identified" in out


def test_log_event_and_span_write_human_lines(caplog):
    interview_logger = logging.getLogger("interview")
    interview_logger.addHandler(caplog.handler)
    try:
        log_event("turn.evaluated", "s1", turn=2, score=74, decision="medium")
        with span("s1", "evaluate"):
            pass
    finally:
        interview_logger.removeHandler(caplog.handler)
    out = "\n".join(record.getMessage() for record in caplog.records)
    assert "session=s1 kind=turn.evaluated decision=medium turn=2 score=74" in out
    assert "kind=span node=evaluate ms=" in out


def test_human_log_path():
    assert human_log_path("logs/interview.log") == "logs/interview-human.log"
    assert human_log_path("logs/interview") == "logs/interview-human.log"
