"""FastAPI routes for the adaptive interview channel and status lookups."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request, WebSocket

from api.gateway import TransportGateway
from flow_manager.errors import InputViolation, StateViolation
from flow_manager.orchestrator import InterviewOrchestrator


router = APIRouter()


def _orchestrator(app) -> InterviewOrchestrator:
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        raise RuntimeError("Interview orchestrator is not configured on the application")
    return orchestrator


@router.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/api/interview-sessions/{session_id}")
async def session_status(session_id: str, request: Request) -> Dict[str, Any]:
    orchestrator = _orchestrator(request.app)
    try:
        return await orchestrator.get_status(session_id)
    except InputViolation as exc:
        raise HTTPException(status_code=404, detail={"code": exc.code, "message": exc.message}) from exc
    except StateViolation as exc:
        raise HTTPException(status_code=409, detail={"code": exc.code, "message": exc.message}) from exc


@router.websocket("/ws/interview")
async def interview_channel(websocket: WebSocket) -> None:
    await TransportGateway(_orchestrator(websocket.app)).serve(websocket)


__all__ = ["router"]
