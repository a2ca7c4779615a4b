"""Per-user skill gap ledger: detection merge, lifecycle and prioritisation."""
from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Dict, List, Optional, Tuple

from agents.skill_index import has_fuzzy, normalize_all
from agents.types import (
    GAP_STATUS_ORDER,
    SEVERITY_RANK,
    Gap,
    GapEvidence,
    GapStatus,
    IdentifiedGap,
    JdEvidence,
    JobView,
    ResumeEvidence,
    ResumeView,
    utcnow,
)
from flow_manager.errors import InputViolation, PersistenceTransient, StateViolation
from observability import log_event
from storage.gaps import GapStore, SqliteGapStore

logger = logging.getLogger(__name__)

KIND_WEIGHT = {"knowledge-gap": 2, "explanation-gap": 1}

ACTION_PLANS = {
    "knowledge-gap": (
        "Learn {skill} fundamentals through the official documentation",
        "Complete practical tutorials on {skill}",
        "Build a small project using {skill}",
        "Practice explaining key {skill} concepts",
    ),
    "explanation-gap": (
        "Review the core concepts behind {skill}",
        "Practice explaining {skill} out loud",
        "Prepare examples and analogies for {skill}",
        "Run mock interview practice focused on {skill}",
    ),
    "depth-gap": (
        "Study advanced {skill} use cases",
        "Understand the trade-offs and limitations of {skill}",
        "Explore real-world applications of {skill}",
        "Prepare detailed examples that show {skill}",
    ),
}
DEFAULT_ACTION_PLAN = ("Review {skill}", "Practice applying {skill}")


def priority(gap: Gap) -> int:
    """``clamp(5 + severity + kind + jd, 1, 10)``."""

    jd = gap.evidence.from_jd
    if jd is not None and jd.required:
        jd_weight = 3
    elif jd is not None and jd.preferred:
        jd_weight = 1
    else:
        jd_weight = 0
    value = 5 + SEVERITY_RANK[gap.severity] + KIND_WEIGHT.get(gap.kind, 0) + jd_weight
    return max(1, min(10, value))


def action_plan(gap: Gap) -> List[str]:
    steps = ACTION_PLANS.get(gap.kind, DEFAULT_ACTION_PLAN)
    return [step.format(skill=gap.skill) for step in steps]


def to_identified(gap: Gap) -> IdentifiedGap:
    return IdentifiedGap(skill=gap.skill, kind=gap.kind, severity=gap.severity, priority=priority(gap))


class GapLedger:
    """Merges detections into open gaps and enforces forward-only status moves."""

    def __init__(self, store: Optional[GapStore] = None) -> None:
        self._store = store or SqliteGapStore()
        self._guard = threading.Lock()
        self._locks: Dict[Tuple[str, str, str], threading.Lock] = {}

    def _key_lock(self, key: Tuple[str, str, str]) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def record(self, user_id: str, gap: Gap, *, now: Optional[dt.datetime] = None) -> Gap:
        """Merge ``gap`` into the matching open gap or insert it as ``identified``.

        Store failures surface as :class:`PersistenceTransient`.
        """

        now = now or utcnow()
        candidate = gap.model_copy(update={"user_id": user_id})
        key = (user_id, candidate.skill, candidate.kind)
        with self._key_lock(key):
            try:
                existing = self._store.find_open(*key)
                if existing is None:
                    stored = candidate.model_copy(update={"status": "identified", "detected_at": now, "closed_at": None})
                    self._store.insert(stored)
                else:
                    severity = max(existing.severity, candidate.severity, key=SEVERITY_RANK.__getitem__)
                    stored = existing.model_copy(
                        update={
                            "severity": severity,
                            "evidence": existing.evidence.merged(candidate.evidence),
                            "detected_at": now,
                        }
                    )
                    self._store.update(stored)
            except Exception as exc:  # noqa: BLE001
                logger.error("Gap record failed user=%s skill=%s kind=%s: %s", user_id, candidate.skill, candidate.kind, exc)
                raise PersistenceTransient(f"gap store failure: {exc}") from exc
        return stored

    def resolve(self, gap_id: str, outcome: GapStatus, *, now: Optional[dt.datetime] = None) -> Gap:
        try:
            gap = self._store.get(gap_id)
        except Exception as exc:  # noqa: BLE001
            raise PersistenceTransient(f"gap store failure: {exc}") from exc
        if gap is None:
            raise InputViolation(f"unknown gap {gap_id}", code="unknown_gap")
        with self._key_lock((gap.user_id, gap.skill, gap.kind)):
            current = GAP_STATUS_ORDER.index(gap.status)
            target = GAP_STATUS_ORDER.index(outcome)
            if target < current:
                raise StateViolation(f"gap {gap_id} cannot move from {gap.status} to {outcome}")
            if target == current:
                return gap
            update: Dict[str, object] = {"status": outcome}
            if outcome == "closed":
                update["closed_at"] = now or utcnow()
            resolved = gap.model_copy(update=update)
            try:
                self._store.update(resolved)
            except Exception as exc:  # noqa: BLE001
                raise PersistenceTransient(f"gap store failure: {exc}") from exc
        log_event("gap.resolved", "-", skill=resolved.skill, status=outcome)
        return resolved

    def priority(self, gap: Gap) -> int:
        return priority(gap)

    def action_plan(self, gap: Gap) -> List[str]:
        return action_plan(gap)

    def get(self, gap_id: str) -> Optional[Gap]:
        return self._store.get(gap_id)

    def open_gaps(self, user_id: str) -> List[Gap]:
        """Open gaps ordered by descending priority, oldest first on ties."""

        gaps = self._store.list_for_user(user_id, open_only=True)
        return sorted(gaps, key=lambda g: (-priority(g), g.detected_at))

    def seed_from_profiles(self, user_id: str, resume: ResumeView, job: Optional[JobView]) -> List[Gap]:
        """Job skills absent from the resume become ``resume-missing`` gaps.

        Required skills are high severity, preferred ones medium. Store
        failures are logged; the computed gaps are still returned.
        """

        if job is None:
            return []
        resume_skills = normalize_all(resume.skills)
        required = normalize_all(job.required_skills)
        candidates: List[Gap] = []
        for skill in required:
            if not has_fuzzy(resume_skills, skill):
                candidates.append(
                    Gap(
                        user_id=user_id,
                        skill=skill,
                        kind="resume-missing",
                        severity="high",
                        evidence=GapEvidence(
                            from_resume=ResumeEvidence(present=False),
                            from_jd=JdEvidence(required=True),
                        ),
                    )
                )
        for skill in normalize_all(job.preferred_skills):
            if skill in required or has_fuzzy(resume_skills, skill):
                continue
            candidates.append(
                Gap(
                    user_id=user_id,
                    skill=skill,
                    kind="resume-missing",
                    severity="medium",
                    evidence=GapEvidence(
                        from_resume=ResumeEvidence(present=False),
                        from_jd=JdEvidence(preferred=True),
                    ),
                )
            )
        seeded: List[Gap] = []
        for gap in candidates:
            try:
                seeded.append(self.record(user_id, gap))
            except PersistenceTransient as exc:
                logger.warning("Seeding gap %s skipped persistence: %s", gap.skill, exc)
                seeded.append(gap)
        return sorted(seeded, key=lambda g: -priority(g))


__all__ = ["ACTION_PLANS", "GapLedger", "action_plan", "priority", "to_identified"]
