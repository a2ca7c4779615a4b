"""Pydantic schemas for the interview session channel."""
from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, Field

from flow_manager.events import CamelModel

RequestType = Literal[
    "start",
    "submit_answer",
    "request_hint",
    "get_status",
    "pause",
    "resume",
    "typing",
    "end",
]


class ClientMessage(CamelModel):
    type: RequestType
    correlation_id: Optional[str] = None


class StartReq(CamelModel):
    user_id: str = Field(min_length=1)
    resume_id: str = Field(min_length=1)
    job_id: Optional[str] = None
    kind: str = "technical"


class SessionReq(CamelModel):
    session_id: str = Field(min_length=1)


class SubmitAnswerReq(SessionReq):
    text: str
    time_spent_sec: Optional[float] = Field(default=None, ge=0)
    media_ref: Optional[str] = None
    turn_number: Optional[int] = None


class TypingReq(SessionReq):
    is_typing: bool = Field(default=True, validation_alias=AliasChoices("isTyping", "is_typing", "typing"))


class ErrorPayload(CamelModel):
    code: str
    kind: str
    message: str
    request_type: Optional[str] = None


class AckEnvelope(CamelModel):
    type: Literal["ack"] = "ack"
    request_type: Optional[str] = None
    correlation_id: Optional[str] = None
    ok: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[ErrorPayload] = None


__all__ = [
    "AckEnvelope",
    "ClientMessage",
    "ErrorPayload",
    "RequestType",
    "SessionReq",
    "StartReq",
    "SubmitAnswerReq",
    "TypingReq",
]
