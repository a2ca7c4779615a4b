from __future__ import annotations  # Interview error taxonomy mapped onto client-facing error envelopes

from typing import Optional


class InterviewError(Exception):  # Base error carrying a stable kind and code
    kind = "Internal"
    code = "internal_error"

    def __init__(self, message: str, *, code: Optional[str] = None, session_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.session_id = session_id


class InputViolation(InterviewError):  # Empty answer, unknown session, wrong turn number
    kind = "InputViolation"
    code = "invalid_input"


class StateViolation(InterviewError):  # Operation not allowed in the session's current status
    kind = "StateViolation"
    code = "invalid_state"


class PersistenceTransient(InterviewError):  # Recoverable store failure; logged, never aborts a turn
    kind = "PersistenceTransient"
    code = "persistence_transient"


class PersistenceFatal(InterviewError):  # Session store unreachable; session marked degraded
    kind = "PersistenceFatal"
    code = "persistence_fatal"


class DeliveryError(InterviewError):  # Client channel failed; the session itself is untouched
    kind = "TransportFailure"
    code = "delivery_failed"


__all__ = [
    "DeliveryError",
    "InputViolation",
    "InterviewError",
    "PersistenceFatal",
    "PersistenceTransient",
    "StateViolation",
]
