from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from src.livechat.models.support_chat import ChatState


class SessionResponse(BaseModel):
    """API response model for a live chat session"""
    session_id: str
    user_name: Optional[str] = None
    state: ChatState
    handoff_active: bool
    start_time: datetime
    last_interaction: datetime
    message_count: int


class StaffMessageRequest(BaseModel):
    """Request model for staff replying in a live chat"""
    message: str


class CommandResult(BaseModel):
    action: str
    success: bool
    message: str
