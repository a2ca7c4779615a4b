"""Structured event logging for interview sessions.

``log_event`` writes one human-readable line per event to stdout and, when
file logs are enabled, the same line plus a JSON record to rotating files.
Event kinds used by the engine: ``session.start``, ``turn.ask``,
``turn.evaluated``, ``gap.recorded``, ``gap.resolved``, ``session.pause``,
``session.resume``, ``session.concluded``, ``session.expired``,
``oracle.fallback`` and ``span``.
"""
from __future__ import annotations

import datetime as dt
import json
import logging
import logging.handlers
import os
import sys
import uuid
from typing import Any

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENABLE_FILE_LOGS = os.getenv("ENABLE_FILE_LOGS", "1") in ("1", "true", "True")
LOG_FILE = os.getenv("LOG_FILE", "logs/interview.log")
LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", "5242880"))
LOG_BACKUP_COUNT = int(os.getenv("LOG_BACKUP_COUNT", "5"))

HUMAN_FIELDS = ("node", "decision", "turn", "score", "skill", "severity", "ms", "purpose", "status", "outcome")
_HUMAN_FORMAT = logging.Formatter(
    "[%(asctime)s] %(levelname)s %(name)s :: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

_logger = logging.getLogger("interview")
_logger.setLevel(LOG_LEVEL)
_logger.propagate = False


def _is_json(record: logging.LogRecord) -> bool:
    return getattr(record, "is_json", False) is True


def _rotating(path: str, *, json_lines: bool) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT)
    handler.setLevel(LOG_LEVEL)
    if json_lines:
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler.addFilter(_is_json)
    else:
        handler.setFormatter(_HUMAN_FORMAT)
        handler.addFilter(lambda record: not _is_json(record))
    return handler


def human_log_path(path: str = LOG_FILE) -> str:
    """``logs/interview.log`` -> ``logs/interview-human.log``."""
    root, ext = os.path.splitext(path)
    return f"{root}-human{ext or '.log'}"


def _ensure_handlers() -> None:
    if _logger.handlers:
        return

    console = logging.StreamHandler(stream=sys.stdout)
    console.setLevel(LOG_LEVEL)
    console.setFormatter(_HUMAN_FORMAT)
    console.addFilter(lambda record: not _is_json(record))
    _logger.addHandler(console)

    if not ENABLE_FILE_LOGS:
        return

    log_dir = os.path.dirname(LOG_FILE)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    _logger.addHandler(_rotating(LOG_FILE, json_lines=True))
    _logger.addHandler(_rotating(human_log_path(LOG_FILE), json_lines=False))


def format_human(event: dict[str, Any]) -> str:
    line = f"session={event.get('session_id') or '-'} kind={event.get('kind')}"
    extras = [f"{key}={event[key]}" for key in HUMAN_FIELDS if event.get(key) is not None]
    return line + (" " + " ".join(extras) if extras else "")


def _emit(message: str, *, is_json: bool) -> None:
    record = _logger.makeRecord(_logger.name, logging.INFO, "", 0, message, (), None)
    record.is_json = is_json  # type: ignore[attr-defined]
    _logger.handle(record)


def log_event(kind: str, session_id: str, **fields: Any) -> None:
    """Log one session event; ``None``-valued fields are dropped."""

    _ensure_handlers()
    event: dict[str, Any] = {
        "ts": dt.datetime.now(dt.timezone.utc).isoformat(),
        "trace": uuid.uuid4().hex,
        "kind": kind,
        "session_id": session_id,
    }
    event.update({key: value for key, value in fields.items() if value is not None})
    _emit(format_human(event), is_json=False)
    if ENABLE_FILE_LOGS:
        _emit(json.dumps(event, ensure_ascii=False, default=str), is_json=True)


__all__ = ["HUMAN_FIELDS", "format_human", "human_log_path", "log_event"]
