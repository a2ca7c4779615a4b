"""Persistence helpers for skill gaps."""
from __future__ import annotations

import datetime as dt
import json
from typing import List, Optional, Protocol

from agents.types import OPEN_GAP_STATUSES, Gap, GapEvidence

from .sqlite import get_conn

_COLUMNS = "gap_id, user_id, skill, kind, severity, status, evidence_json, detected_at, closed_at"


class GapStore(Protocol):
    def find_open(self, user_id: str, skill: str, kind: str) -> Optional[Gap]: ...

    def insert(self, gap: Gap) -> None: ...

    def update(self, gap: Gap) -> None: ...

    def get(self, gap_id: str) -> Optional[Gap]: ...

    def list_for_user(self, user_id: str, *, open_only: bool = False) -> List[Gap]: ...


class SqliteGapStore:
    """Gap rows in ``skill_gaps``; each call is its own transaction."""

    def find_open(self, user_id: str, skill: str, kind: str) -> Optional[Gap]:
        placeholders = ", ".join("?" for _ in OPEN_GAP_STATUSES)
        with get_conn() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""SELECT {_COLUMNS} FROM skill_gaps
                    WHERE user_id=? AND skill=? AND kind=? AND status IN ({placeholders})
                    ORDER BY detected_at DESC LIMIT 1""",
                (user_id, skill, kind, *OPEN_GAP_STATUSES),
            )
            row = cur.fetchone()
        return _row_to_gap(row) if row else None

    def insert(self, gap: Gap) -> None:
        with get_conn() as conn:
            conn.execute(
                f"INSERT INTO skill_gaps ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    gap.gap_id,
                    gap.user_id,
                    gap.skill,
                    gap.kind,
                    gap.severity,
                    gap.status,
                    gap.evidence.model_dump_json(),
                    gap.detected_at.isoformat(),
                    gap.closed_at.isoformat() if gap.closed_at else None,
                ),
            )

    def update(self, gap: Gap) -> None:
        with get_conn() as conn:
            cur = conn.cursor()
            cur.execute(
                """UPDATE skill_gaps
                   SET severity=?, status=?, evidence_json=?, detected_at=?, closed_at=?
                   WHERE gap_id=?""",
                (
                    gap.severity,
                    gap.status,
                    gap.evidence.model_dump_json(),
                    gap.detected_at.isoformat(),
                    gap.closed_at.isoformat() if gap.closed_at else None,
                    gap.gap_id,
                ),
            )
            if cur.rowcount == 0:
                raise KeyError(gap.gap_id)

    def get(self, gap_id: str) -> Optional[Gap]:
        with get_conn() as conn:
            cur = conn.cursor()
            cur.execute(f"SELECT {_COLUMNS} FROM skill_gaps WHERE gap_id=?", (gap_id,))
            row = cur.fetchone()
        return _row_to_gap(row) if row else None

    def list_for_user(self, user_id: str, *, open_only: bool = False) -> List[Gap]:
        query = f"SELECT {_COLUMNS} FROM skill_gaps WHERE user_id=?"
        params: list = [user_id]
        if open_only:
            query += f" AND status IN ({', '.join('?' for _ in OPEN_GAP_STATUSES)})"
            params.extend(OPEN_GAP_STATUSES)
        query += " ORDER BY detected_at"
        with get_conn() as conn:
            cur = conn.cursor()
            cur.execute(query, params)
            rows = cur.fetchall()
        return [_row_to_gap(row) for row in rows]


def _row_to_gap(row) -> Gap:
    gap_id, user_id, skill, kind, severity, status, evidence_json, detected_at, closed_at = row
    return Gap(
        gap_id=gap_id,
        user_id=user_id,
        skill=skill,
        kind=kind,
        severity=severity,
        status=status,
        evidence=GapEvidence.model_validate(json.loads(evidence_json)),
        detected_at=dt.datetime.fromisoformat(detected_at),
        closed_at=dt.datetime.fromisoformat(closed_at) if closed_at else None,
    )


__all__ = ["GapStore", "SqliteGapStore"]
