"""Session registry: per-session actor locks over the durable session store."""
from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from typing import Dict, Optional

from flow_manager.errors import PersistenceFatal
from interview_session.state import SessionState
from storage.sessions import SessionStore, SqliteSessionStore

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    """Return a fresh opaque session identifier."""

    return str(uuid.uuid4())


class SessionRegistry:
    """Serialises work per session and keeps the live copy of each state.

    Every mutation of a session runs under ``lock(session_id)``; states are
    written through to the store before events for the next step go out.
    Completed and terminated sessions are served from the store only.
    """

    def __init__(self, store: Optional[SessionStore] = None) -> None:
        self._store = store or SqliteSessionStore()
        self._states: Dict[str, SessionState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def store(self) -> SessionStore:
        return self._store

    def lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks.setdefault(session_id, asyncio.Lock())
        return lock

    def is_live(self, session_id: str) -> bool:
        return session_id in self._states

    def get(self, session_id: str) -> Optional[SessionState]:
        state = self._states.get(session_id)
        if state is not None:
            return state
        try:
            state = self._store.load(session_id)
        except sqlite3.Error as exc:
            logger.error("Session load failed session=%s: %s", session_id, exc)
            raise PersistenceFatal("session store unreachable", session_id=session_id) from exc
        if state is not None and not state.is_finished:
            self._states[session_id] = state
        return state

    def save(self, state: SessionState) -> None:
        """Persist ``state``; a store failure marks it degraded and raises."""

        self._states[state.session_id] = state
        try:
            self._store.save(state)
        except sqlite3.Error as exc:
            state.degraded = True
            logger.error("Session save failed session=%s: %s", state.session_id, exc)
            raise PersistenceFatal("session store unreachable", session_id=state.session_id) from exc
        if state.is_finished:
            self.forget(state.session_id)

    def reconnect(self, state: SessionState) -> bool:
        """Clear the degraded flag once the store answers again."""

        if not state.degraded:
            return True
        if not self._store.ping():
            return False
        state.degraded = False
        self.save(state)
        logger.info("Session store reachable again session=%s", state.session_id)
        return True

    def forget(self, session_id: str) -> None:
        """Drop the live copy; the lock stays so late callers still queue behind it."""

        self._states.pop(session_id, None)


__all__ = ["SessionRegistry", "new_session_id"]
