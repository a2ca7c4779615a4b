"""Duplex session channel: request dispatch, acks, and server push events."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from api.schemas import (
    AckEnvelope,
    ClientMessage,
    ErrorPayload,
    SessionReq,
    StartReq,
    SubmitAnswerReq,
    TypingReq,
)
from flow_manager.errors import DeliveryError, InputViolation, InterviewError
from flow_manager.events import EventSink, ServerEvent, evaluation_envelope, status_envelope
from flow_manager.orchestrator import InterviewOrchestrator

logger = logging.getLogger(__name__)


def websocket_sink(websocket: WebSocket) -> EventSink:
    """Push events to ``websocket``; send failures become :class:`DeliveryError`."""

    async def _send(event: ServerEvent) -> None:
        try:
            await websocket.send_json(event.wire())
        except (WebSocketDisconnect, RuntimeError) as exc:
            raise DeliveryError(f"client channel closed: {exc}", session_id=event.session_id) from exc

    return _send


class TransportGateway:
    """Bridges one client channel to the orchestrator.

    Each inbound JSON request is answered with an ``ack`` envelope carrying
    the caller's correlation id; session progress travels as push events.
    A dropped channel leaves its sessions intact for a later ``resume``.
    """

    def __init__(self, orchestrator: InterviewOrchestrator) -> None:
        self._orchestrator = orchestrator

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        sink = websocket_sink(websocket)
        try:
            while True:
                raw = await websocket.receive_text()
                ack = await self.dispatch(raw, sink)
                await websocket.send_json(ack.wire())
        except WebSocketDisconnect:
            logger.info("Client channel disconnected")
        except DeliveryError as exc:
            logger.info("Client channel lost during delivery: %s", exc)

    async def dispatch(self, raw: Any, sink: EventSink) -> AckEnvelope:
        """Handle one request and build its ack; interview errors also push an ``error`` event."""

        request_type: Optional[str] = None
        correlation_id: Optional[str] = None
        session_id = ""
        try:
            message = _decode(raw)
            correlation_id = _correlation(message)
            session_id = str(message.get("sessionId") or message.get("session_id") or "")
            envelope = _validate(ClientMessage, message)
            request_type = envelope.type
            data = await self._handle(envelope.type, message, sink)
        except DeliveryError:
            raise
        except InterviewError as exc:
            error = ErrorPayload(code=exc.code, kind=exc.kind, message=exc.message, request_type=request_type)
            logger.info("Request rejected type=%s code=%s: %s", request_type, exc.code, exc.message)
            await sink(ServerEvent(event="error", session_id=session_id or (exc.session_id or ""), data=error.wire()))
            return AckEnvelope(request_type=request_type, correlation_id=correlation_id, ok=False, error=error)
        return AckEnvelope(request_type=request_type, correlation_id=correlation_id, ok=True, data=data)

    async def _handle(self, request_type: str, message: Dict[str, Any], sink: EventSink) -> Dict[str, Any]:
        orchestrator = self._orchestrator
        if request_type == "start":
            req = _validate(StartReq, message)
            state = await orchestrator.start_session(req.user_id, req.resume_id, req.job_id, req.kind, emit=sink)
            pending = state.pending_turn()
            return {"sessionId": state.session_id, "turnNumber": pending.turn_number if pending else None}
        if request_type == "submit_answer":
            req = _validate(SubmitAnswerReq, message)
            evaluation = await orchestrator.submit_answer(
                req.session_id,
                req.text,
                time_spent=req.time_spent_sec,
                media_ref=req.media_ref,
                turn_number=req.turn_number,
                emit=sink,
            )
            turn_number = req.turn_number
            if turn_number is None:
                state = orchestrator.sessions.get(req.session_id)
                closed = state.closed_turns() if state else []
                turn_number = closed[-1].turn_number if closed else 0
            return {"evaluation": evaluation_envelope(turn_number, evaluation)}
        if request_type == "request_hint":
            req = _validate(SessionReq, message)
            return {"hint": await orchestrator.request_hint(req.session_id, emit=sink)}
        if request_type == "get_status":
            req = _validate(SessionReq, message)
            return await orchestrator.get_status(req.session_id, emit=sink)
        if request_type == "pause":
            req = _validate(SessionReq, message)
            return status_envelope(await orchestrator.pause(req.session_id, emit=sink))
        if request_type == "resume":
            req = _validate(SessionReq, message)
            return status_envelope(await orchestrator.resume(req.session_id, emit=sink))
        if request_type == "typing":
            req = _validate(TypingReq, message)
            await orchestrator.typing(req.session_id, req.is_typing)
            return {"typing": req.is_typing}
        if request_type == "end":
            req = _validate(SessionReq, message)
            return status_envelope(await orchestrator.terminate(req.session_id, emit=sink))
        raise InputViolation(f"unsupported request type {request_type}", code="unknown_request")


def _decode(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise InputViolation("message is not valid JSON", code="invalid_json") from exc
    if not isinstance(raw, dict):
        raise InputViolation("message must be a JSON object", code="invalid_message")
    return raw


def _correlation(message: Dict[str, Any]) -> Optional[str]:
    value = message.get("correlationId", message.get("correlation_id"))
    return str(value) if value is not None else None


def _validate(model, message: Dict[str, Any]):
    try:
        return model.model_validate(message)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InputViolation(f"invalid request field {location}: {first.get('msg', 'invalid')}", code="invalid_request") from exc


__all__ = ["TransportGateway", "websocket_sink"]
