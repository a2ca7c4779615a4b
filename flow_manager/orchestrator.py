from __future__ import annotations  # Adaptive interview orchestration: start, ask, evaluate, adapt, conclude

import datetime as dt
import logging
import random
from typing import Any, Callable, Dict, List, Optional

from agents.answer_evaluator import AnswerEvaluator, score as score_answer
from agents.question_composer import QuestionComposer, hint_for
from agents.skill_index import normalize_all
from agents.types import (
    Evaluation,
    Gap,
    GapEvidence,
    InterviewEvidence,
    JobView,
    Question,
    ResumeView,
    utcnow,
)
from config.routes import oracle_route
from config.settings import Settings
from interview_session.state import SessionState, Turn
from llm_gateway import LanguageOracle, OracleGateway
from observability import log_event, span
from services.gap_ledger import GapLedger, to_identified
from services.profiles import ProfileDirectory
from services.question_cache import QuestionCache
from services.scoring import final_report
from services.sessions import SessionRegistry, new_session_id

from .errors import DeliveryError, InputViolation, PersistenceFatal, PersistenceTransient, StateViolation
from .events import EventName, EventSink, ServerEvent, evaluation_envelope, question_envelope, status_envelope

logger = logging.getLogger(__name__)  # Module logger

DEFAULT_ROLE = "Software Engineer"  # Target role when neither job nor resume names one


async def _discard(_event: ServerEvent) -> None:  # Sink used when the caller is not listening
    return None


class _Outbox:  # Ordered emitter that keeps going after a delivery failure
    def __init__(self, sink: Optional[EventSink], session_id: str) -> None:
        self._sink = sink or _discard
        self._session_id = session_id
        self.failure: Optional[DeliveryError] = None

    async def emit(self, event: EventName, data: Dict[str, Any]) -> None:
        if self.failure is not None:
            return
        try:
            await self._sink(ServerEvent(event=event, session_id=self._session_id, data=data))
        except DeliveryError as exc:
            logger.warning("Delivery failed session=%s event=%s: %s", self._session_id, event, exc)
            self.failure = exc

    def raise_for_delivery(self) -> None:
        if self.failure is not None:
            raise self.failure


class InterviewOrchestrator:
    """Per-session state machine driving compose, evaluate and adapt.

    Public operations are coroutines serialised per session through the
    registry's locks; independent sessions proceed concurrently.
    """

    def __init__(
        self,
        composer: QuestionComposer,
        evaluator: AnswerEvaluator,
        ledger: GapLedger,
        sessions: SessionRegistry,
        profiles: ProfileDirectory,
        settings: Settings,
        *,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self._composer = composer
        self._evaluator = evaluator
        self._ledger = ledger
        self._sessions = sessions
        self._profiles = profiles
        self._settings = settings
        self._clock = clock

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    @property
    def ledger(self) -> GapLedger:
        return self._ledger

    async def start_session(
        self,
        user_id: str,
        resume_id: str,
        job_id: Optional[str] = None,
        kind: str = "technical",
        emit: Optional[EventSink] = None,
    ) -> SessionState:
        if not str(user_id or "").strip():
            raise InputViolation("userId is required", code="missing_user")
        resume = self._profiles.get_resume(resume_id)
        if resume is None:
            raise InputViolation(f"unknown resume {resume_id}", code="unknown_resume")
        job: Optional[JobView] = None
        if job_id:
            job = self._profiles.get_job(job_id)
            if job is None:
                raise InputViolation(f"unknown job {job_id}", code="unknown_job")

        session_id = new_session_id()
        now = self._clock()
        seeds = self._ledger.seed_from_profiles(user_id, resume, job)
        state = SessionState(
            session_id=session_id,
            user_id=user_id,
            target_role=_target_role(resume, job),
            interview_kind=kind,
            resume_id=resume_id,
            job_id=job_id,
            candidate_skills=normalize_all(resume.skills),
            required_skills=normalize_all(job.required_skills) if job else [],
            preferred_skills=normalize_all(job.preferred_skills) if job else [],
            identified_gaps=[to_identified(gap) for gap in seeds],
            started_at=now,
            last_activity_at=now,
        )
        outbox = _Outbox(emit, session_id)
        async with self._sessions.lock(session_id):
            question = await self._composer.compose(state, resume, job)
            turn = state.ask(question, self._clock())
            self._sessions.save(state)
            log_event("session.start", session_id, decision=kind, outcome=state.target_role)
            log_event("turn.ask", session_id, turn=turn.turn_number, decision=question.focus_kind)
            await outbox.emit(
                "session_started",
                {
                    "sessionId": session_id,
                    "userId": user_id,
                    "targetRole": state.target_role,
                    "kind": kind,
                    "maxTurns": self._settings.MAX_TURNS,
                },
            )
            await outbox.emit("question", question_envelope(turn))
        outbox.raise_for_delivery()
        return state

    async def submit_answer(
        self,
        session_id: str,
        text: str,
        time_spent: Optional[float] = None,
        media_ref: Optional[str] = None,
        turn_number: Optional[int] = None,
        emit: Optional[EventSink] = None,
    ) -> Evaluation:
        if not (text or "").strip():
            raise InputViolation("answer text is empty", code="empty_answer", session_id=session_id)
        if time_spent is not None and time_spent < 0:
            raise InputViolation("timeSpentSec must be >= 0", code="invalid_time", session_id=session_id)
        outbox = _Outbox(emit, session_id)
        async with self._sessions.lock(session_id):
            state = self._load(session_id, mutating=True)
            self._require_active(state)
            pending = state.pending_turn()
            if pending is None:
                raise StateViolation("no question is pending", code="no_pending_turn", session_id=session_id)
            if turn_number is not None and turn_number != pending.turn_number:
                raise InputViolation(
                    f"expected turn {pending.turn_number}, got {turn_number}",
                    code="unexpected_turn",
                    session_id=session_id,
                )

            now = self._clock()
            state.record_answer(text, time_spent=time_spent, media_ref=media_ref, now=now)
            await outbox.emit("evaluating", {"turnNumber": pending.turn_number})
            evaluation = await self._evaluate(session_id, pending.question, text)
            turn = state.close_turn(evaluation, self._clock(), window_size=self._settings.PERFORMANCE_WINDOW)
            self._composer.cache.record_outcome(turn.question_hash, evaluation.overall_score)
            log_event(
                "turn.evaluated",
                session_id,
                turn=turn.turn_number,
                score=evaluation.overall_score,
                decision=state.current_difficulty,
                outcome="degraded" if evaluation.degraded else "ok",
            )
            self._record_gaps(state, turn, evaluation)
            await outbox.emit("evaluation", evaluation_envelope(turn.turn_number, evaluation))
            await self._advance(state, turn, outbox)
        outbox.raise_for_delivery()
        return evaluation

    async def request_hint(self, session_id: str, emit: Optional[EventSink] = None) -> str:
        outbox = _Outbox(emit, session_id)
        async with self._sessions.lock(session_id):
            state = self._load(session_id, mutating=True)
            self._require_active(state)
            pending = state.pending_turn()
            if pending is None:
                raise StateViolation("no question is pending", code="no_pending_turn", session_id=session_id)
            hint = hint_for(pending.question, pending.hints_used)
            pending.hints_used += 1
            state.touch(self._clock())
            self._sessions.save(state)
            await outbox.emit(
                "hint",
                {"turnNumber": pending.turn_number, "hint": hint, "hintsUsed": pending.hints_used},
            )
        outbox.raise_for_delivery()
        return hint

    async def get_status(self, session_id: str, emit: Optional[EventSink] = None) -> Dict[str, Any]:
        outbox = _Outbox(emit, session_id)
        async with self._sessions.lock(session_id):
            state = self._load(session_id, mutating=False)
            status = status_envelope(state)
            await outbox.emit("state_update", status)
        outbox.raise_for_delivery()
        return status

    async def pause(self, session_id: str, emit: Optional[EventSink] = None) -> SessionState:
        outbox = _Outbox(emit, session_id)
        async with self._sessions.lock(session_id):
            state = self._load(session_id, mutating=True)
            state.pause()
            state.touch(self._clock())
            self._sessions.save(state)
            log_event("session.pause", session_id, status=state.status)
            pending = state.pending_turn()
            await outbox.emit("paused", {"turnNumber": pending.turn_number if pending else None})
        outbox.raise_for_delivery()
        return state

    async def resume(self, session_id: str, emit: Optional[EventSink] = None) -> SessionState:
        """Resume a paused session, or re-attach to an active one; both re-emit the pending question."""

        outbox = _Outbox(emit, session_id)
        async with self._sessions.lock(session_id):
            state = self._load(session_id, mutating=True)
            if state.status == "paused":
                state.resume()
            elif state.status != "active":
                raise StateViolation(f"cannot resume a {state.status} session", session_id=session_id)
            state.touch(self._clock())
            self._sessions.save(state)
            log_event("session.resume", session_id, status=state.status)
            pending = state.pending_turn()
            await outbox.emit("resumed", {"turnNumber": pending.turn_number if pending else None})
            if pending is not None:
                await outbox.emit("question", question_envelope(pending))
        outbox.raise_for_delivery()
        return state

    async def terminate(self, session_id: str, emit: Optional[EventSink] = None) -> SessionState:
        outbox = _Outbox(emit, session_id)
        async with self._sessions.lock(session_id):
            state = self._load(session_id, mutating=True)
            state.terminate()
            state.touch(self._clock())
            report = final_report(state, self._open_gap_count(state), terminated=True)
            state.final_report = report.model_dump(by_alias=True, mode="json")
            self._sessions.save(state)
            log_event("session.concluded", session_id, status=state.status, score=report.readiness_score)
            await outbox.emit("terminated", {"finalReport": state.final_report})
        outbox.raise_for_delivery()
        return state

    async def typing(self, session_id: str, is_typing: bool) -> None:
        async with self._sessions.lock(session_id):
            state = self._load(session_id, mutating=False)
            if state.status == "active":
                state.touch(self._clock())
            logger.debug("Typing indicator session=%s typing=%s", session_id, is_typing)

    async def _evaluate(self, session_id: str, question: Question, text: str) -> Evaluation:
        try:
            with span(session_id, "evaluate"):
                return await self._evaluator.evaluate(question, text)
        except Exception as exc:  # noqa: BLE001
            logger.error("Evaluator failed session=%s; scoring without extraction: %s", session_id, exc)
            return score_answer(question, text, None, degraded=True)

    def _record_gaps(self, state: SessionState, turn: Turn, evaluation: Evaluation) -> None:
        for detected in evaluation.gaps:
            missed = [detected.skill] if detected.kind == "knowledge-gap" else list(evaluation.missing_concepts)
            gap = Gap(
                user_id=state.user_id,
                skill=detected.skill,
                kind=detected.kind,
                severity=detected.severity,
                evidence=GapEvidence(
                    from_interview=InterviewEvidence(
                        asked=True,
                        session_ids=[state.session_id],
                        turn_numbers=[turn.turn_number],
                        missed_concepts=missed,
                        feedback=list(evaluation.feedback.weaknesses),
                    )
                ),
            )
            try:
                stored = self._ledger.record(state.user_id, gap)
            except PersistenceTransient as exc:
                logger.warning("Gap not persisted session=%s skill=%s: %s", state.session_id, detected.skill, exc)
                stored = gap
            else:
                if stored.gap_id not in state.recorded_gap_ids:
                    state.recorded_gap_ids.append(stored.gap_id)
            _remember_gap(state, stored)
            log_event(
                "gap.recorded",
                state.session_id,
                turn=turn.turn_number,
                skill=stored.skill,
                severity=stored.severity,
                decision=stored.kind,
            )

    async def _advance(self, state: SessionState, turn: Turn, outbox: _Outbox) -> None:
        """Conclude, ask a follow-up, or ask a fresh question."""

        if state.should_stop(self._settings.MAX_TURNS, self._settings.MIN_TURNS):
            await self._conclude(state, outbox)
            return
        evaluation = turn.evaluation
        question: Optional[Question] = None
        parent: Optional[int] = None
        if evaluation is not None and evaluation.follow_up_needed and not turn.question.is_follow_up:
            question = await self._composer.compose_follow_up(turn, state.session_id)
            parent = turn.turn_number if question is not None else None
        if question is None:
            resume, job = self._views(state)
            question = await self._composer.compose(state, resume, job)
        next_turn = state.ask(question, self._clock(), parent_turn_number=parent)
        self._sessions.save(state)
        log_event("turn.ask", state.session_id, turn=next_turn.turn_number, decision=question.focus_kind)
        await outbox.emit("question", question_envelope(next_turn))

    async def _conclude(self, state: SessionState, outbox: _Outbox) -> None:
        state.complete()
        report = final_report(state, self._open_gap_count(state), terminated=False)
        state.final_report = report.model_dump(by_alias=True, mode="json")
        self._sessions.save(state)
        log_event(
            "session.concluded",
            state.session_id,
            status=state.status,
            score=report.readiness_score,
            outcome=report.readiness_level,
        )
        await outbox.emit("completed", {"finalReport": state.final_report})

    def _open_gap_count(self, state: SessionState) -> int:
        count = 0
        for gap_id in state.recorded_gap_ids:
            try:
                gap = self._ledger.get(gap_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Gap lookup failed session=%s gap=%s: %s", state.session_id, gap_id, exc)
                count += 1
                continue
            if gap is None or gap.is_open:
                count += 1
        return count

    def _load(self, session_id: str, *, mutating: bool) -> SessionState:
        state = self._sessions.get(session_id)
        if state is None:
            raise InputViolation(f"unknown session {session_id}", code="unknown_session", session_id=session_id)
        now = self._clock()
        grace = dt.timedelta(hours=self._settings.SESSION_IDLE_TIMEOUT_HOURS)
        if state.is_idle_expired(now, grace):
            state.terminate()
            report = final_report(state, self._open_gap_count(state), terminated=True)
            state.final_report = report.model_dump(by_alias=True, mode="json")
            log_event("session.expired", session_id, status=state.status)
            self._sessions.save(state)
            raise StateViolation("session expired after inactivity", code="session_expired", session_id=session_id)
        if mutating and state.degraded and not self._sessions.reconnect(state):
            raise PersistenceFatal("session store unreachable", session_id=session_id)
        return state

    def _require_active(self, state: SessionState) -> None:
        if state.status != "active":
            raise StateViolation(f"session is {state.status}", code="not_active", session_id=state.session_id)

    def _views(self, state: SessionState) -> tuple[ResumeView, Optional[JobView]]:
        resume = self._profiles.get_resume(state.resume_id) or ResumeView(skills=list(state.candidate_skills))
        job = self._profiles.get_job(state.job_id) if state.job_id else None
        return resume, job


def _target_role(resume: ResumeView, job: Optional[JobView]) -> str:
    if job is not None and job.title.strip():
        return job.title.strip()
    if resume.experience:
        return resume.experience[0].title
    return DEFAULT_ROLE


def _remember_gap(state: SessionState, gap: Gap) -> None:  # Keep identified gaps unique and priority ordered
    entry = to_identified(gap)
    kept: List = [item for item in state.identified_gaps if (item.skill, item.kind) != (entry.skill, entry.kind)]
    kept.append(entry)
    kept.sort(key=lambda item: -item.priority)
    state.identified_gaps = kept


def build_orchestrator(
    settings: Settings,
    profiles: ProfileDirectory,
    *,
    oracle: Optional[LanguageOracle] = None,
    registry: Optional[SessionRegistry] = None,
    ledger: Optional[GapLedger] = None,
    rng: Optional[random.Random] = None,
    clock: Callable[[], dt.datetime] = utcnow,
) -> InterviewOrchestrator:
    """Wire the engine from settings; an explicit ``oracle`` overrides the configured route."""

    if oracle is not None:
        gateway = OracleGateway(
            oracle,
            timeout_s=settings.ORACLE_TIMEOUT_S,
            max_retries=settings.ORACLE_MAX_RETRIES,
            retry_base_delay_s=settings.ORACLE_RETRY_BASE_DELAY_S,
        )
    else:
        gateway = OracleGateway.from_route(oracle_route(settings))
    composer = QuestionComposer(
        gateway,
        QuestionCache(settings.CACHE_BUCKET_CAP),
        rng=rng,
        reinforce_probability=settings.REINFORCE_PROBABILITY,
    )
    return InterviewOrchestrator(
        composer,
        AnswerEvaluator(gateway),
        ledger or GapLedger(),
        registry or SessionRegistry(),
        profiles,
        settings,
        clock=clock,
    )


__all__ = ["InterviewOrchestrator", "build_orchestrator"]
