"""Lightweight CLI helpers for inspecting session and gap tables."""
from __future__ import annotations

import argparse
import sqlite3

from config.settings import settings


def tail_sessions(limit: int = 20) -> None:
    conn = sqlite3.connect(settings.DB_PATH)
    try:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT last_activity_at, session_id, user_id, target_role, status, current_difficulty, turn_count
            FROM interview_sessions
            ORDER BY last_activity_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        for row in cursor.fetchall():
            ts, session_id, user_id, role, status, difficulty, turns = row
            print(f"[{ts}] {session_id} user={user_id} role={role} status={status} difficulty={difficulty} turns={turns}")
    finally:
        conn.close()


def tail_gaps(limit: int = 20) -> None:
    conn = sqlite3.connect(settings.DB_PATH)
    try:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT detected_at, user_id, skill, kind, severity, status
            FROM skill_gaps
            ORDER BY detected_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        for row in cursor.fetchall():
            ts, user_id, skill, kind, severity, status = row
            print(f"[{ts}] {user_id} {skill} -> {kind}/{severity} status={status}")
    finally:
        conn.close()


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--tail-sessions", type=int, help="Show the most recently active sessions")
    parser.add_argument("--tail-gaps", type=int, help="Show the latest detected skill gaps")
    args = parser.parse_args()

    if args.tail_sessions:
        tail_sessions(args.tail_sessions)
    if args.tail_gaps:
        tail_gaps(args.tail_gaps)


if __name__ == "__main__":
    main()
