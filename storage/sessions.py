"""Persistence helpers for interview session state."""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol

from interview_session.state import SessionState

from .sqlite import get_conn

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def save(self, state: SessionState) -> None: ...

    def load(self, session_id: str) -> Optional[SessionState]: ...

    def ping(self) -> bool: ...


class SqliteSessionStore:
    """Whole-state snapshots in ``interview_sessions``, one row per session."""

    def save(self, state: SessionState) -> None:
        with get_conn() as conn:
            conn.execute(
                """INSERT INTO interview_sessions
                   (session_id, user_id, target_role, status, current_difficulty, turn_count,
                    created_at, last_activity_at, schema_version, state_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(session_id) DO UPDATE SET
                     status=excluded.status,
                     current_difficulty=excluded.current_difficulty,
                     turn_count=excluded.turn_count,
                     last_activity_at=excluded.last_activity_at,
                     schema_version=excluded.schema_version,
                     state_json=excluded.state_json""",
                (
                    state.session_id,
                    state.user_id,
                    state.target_role,
                    state.status,
                    state.current_difficulty,
                    len(state.turns),
                    state.started_at.isoformat(),
                    state.last_activity_at.isoformat(),
                    state.schema_version,
                    state.model_dump_json(),
                ),
            )

    def load(self, session_id: str) -> Optional[SessionState]:
        with get_conn() as conn:
            cur = conn.cursor()
            cur.execute("SELECT state_json FROM interview_sessions WHERE session_id=?", (session_id,))
            row = cur.fetchone()
        if row is None:
            return None
        return SessionState.model_validate_json(row[0])

    def list_recent(self, limit: int = 20) -> List[SessionState]:
        with get_conn() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT state_json FROM interview_sessions ORDER BY last_activity_at DESC LIMIT ?",
                (limit,),
            )
            rows = cur.fetchall()
        return [SessionState.model_validate_json(row[0]) for row in rows]

    def ping(self) -> bool:
        try:
            with get_conn() as conn:
                conn.execute("SELECT 1 FROM interview_sessions LIMIT 1")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Session store ping failed: %s", exc)
            return False
        return True


__all__ = ["SessionStore", "SqliteSessionStore"]
