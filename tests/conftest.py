import json
import os
import random
import sys
import tempfile
from pathlib import Path

import pytest

os.environ.setdefault("ENABLE_FILE_LOGS", "0")

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from agents.types import ExperienceEntry, JobView, ResumeView
from config.settings import Settings, settings
from flow_manager.orchestrator import build_orchestrator
from services.profiles import InMemoryProfileDirectory
from storage.migrate import migrate


@pytest.fixture(autouse=True)
def tmp_db(monkeypatch):
    td = tempfile.TemporaryDirectory()
    db_path = os.path.join(td.name, "test.db")
    monkeypatch.setattr(settings, "DB_PATH", db_path, raising=False)
    migrate(db_path)
    try:
        yield
    finally:
        td.cleanup()


def purpose_of(messages) -> str:
    text = " ".join(message["content"] for message in messages)
    if "You extract information" in text:
        return "extraction"
    if "asking a follow-up" in text:
        return "follow_up"
    if "You write one interview question" in text:
        return "question"
    return "unknown"


class FakeOracle:
    """Scripted oracle: replies per purpose from a callable, a queue, or a fixed value."""

    def __init__(self, question=None, extraction=None, follow_up=None):
        self.replies = {"question": question, "extraction": extraction, "follow_up": follow_up}
        self.calls = []

    async def generate(self, messages, *, temperature, max_tokens, json_schema=None):
        purpose = purpose_of(messages)
        self.calls.append({"purpose": purpose, "messages": list(messages), "json_schema": json_schema})
        reply = self.replies.get(purpose)
        if callable(reply):
            reply = reply(messages)
        elif isinstance(reply, list):
            reply = reply.pop(0) if reply else None
        if reply is None:
            raise RuntimeError(f"no scripted reply for {purpose}")
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)

    def purposes(self):
        return [call["purpose"] for call in self.calls]


class RecordingSink:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    def names(self):
        return [event.event for event in self.events]

    def of(self, name):
        return [event for event in self.events if event.event == name]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def profiles():
    return InMemoryProfileDirectory(
        resumes={
            "r1": ResumeView(
                skills=["Python", "React.js", "SQL"],
                experience=[
                    ExperienceEntry(title="Backend Engineer", company="Acme"),
                    ExperienceEntry(title="Developer", company="Initech"),
                    ExperienceEntry(title="Intern", company="Globex"),
                ],
                summary="Backend developer",
            ),
        },
        jobs={
            "j1": JobView(
                title="Platform Engineer",
                required_skills=["python", "kubernetes", "sql"],
                preferred_skills=["react", "terraform"],
                responsibilities=["Run services", "Own deployments", "Mentor", "On-call"],
            ),
        },
    )


@pytest.fixture
def make_orchestrator(profiles):
    def _make(oracle=None, clock=None, seed=0, registry=None, ledger=None, **overrides):
        values = {
            "DB_PATH": settings.DB_PATH,
            "ORACLE_BASE_URL": None,
            "ORACLE_CONFIG_PATH": None,
            "ORACLE_RETRY_BASE_DELAY_S": 0.0,
            "ORACLE_TIMEOUT_S": 30.0,
            "REINFORCE_PROBABILITY": 0.0,
        }
        values.update(overrides)
        config = Settings(_env_file=None, **values)
        kwargs = {"oracle": oracle, "rng": random.Random(seed)}
        if clock is not None:
            kwargs["clock"] = clock
        if registry is not None:
            kwargs["registry"] = registry
        if ledger is not None:
            kwargs["ledger"] = ledger
        return build_orchestrator(config, profiles, **kwargs)

    return _make


@pytest.fixture
def fake_oracle():
    return FakeOracle
