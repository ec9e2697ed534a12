import logging
from typing import List
from fastapi import APIRouter, HTTPException, Depends

from src.livechat.chat.chat_session import ChatSession
from src.livechat.chat.service_container import ServiceContainer
from src.livechat.models.api import (
    CommandResult,
    SessionResponse,
    StaffMessageRequest,
)
from src.livechat.api.deps import get_service_container

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_session(
    services: ServiceContainer, session_id: str
) -> ChatSession:
    session = services.get_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=404, detail=f"Session {session_id} not found"
        )
    return session


@router.get("/sessions/active", response_model=List[SessionResponse])
async def get_active_sessions(
    services: ServiceContainer = Depends(get_service_container)
):
    """Get all open live chat sessions for staff to view"""
    return [
        SessionResponse(**session.get_session_stats())
        for session in services.active_sessions.values()
    ]


@router.post("/sessions/{session_id}/message", response_model=CommandResult)
async def staff_send_message(
    session_id: str,
    request: StaffMessageRequest,
    services: ServiceContainer = Depends(get_service_container)
):
    """Post a staff reply into the customer's chat widget"""
    session = _require_session(services, session_id)
    message = session.post_staff_message(request.message)
    if message is None:
        return CommandResult(
            action="message", success=False, message="Nothing was posted"
        )
    logger.info(f"Staff replied in session {session_id}")
    return CommandResult(action="message", success=True, message=message.id)


@router.post("/sessions/{session_id}/release", response_model=CommandResult)
async def release_to_assistant(
    session_id: str,
    services: ServiceContainer = Depends(get_service_container)
):
    """Hand a waiting conversation back to the assistant"""
    session = _require_session(services, session_id)
    if not session.release_handoff():
        return CommandResult(
            action="release",
            success=False,
            message="Session is not waiting for staff",
        )
    return CommandResult(
        action="release", success=True, message="Released to assistant"
    )
