from __future__ import annotations  # Adaptive interview flow: error taxonomy re-exports; engine lives in .orchestrator

from .errors import (
    DeliveryError,
    InputViolation,
    InterviewError,
    PersistenceFatal,
    PersistenceTransient,
    StateViolation,
)

__all__ = [
    "DeliveryError",
    "InputViolation",
    "InterviewError",
    "PersistenceFatal",
    "PersistenceTransient",
    "StateViolation",
]
