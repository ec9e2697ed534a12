from enum import Enum
from itertools import count
from uuid import uuid4
from pydantic import BaseModel, Field
from typing import Optional, Literal, Union
from datetime import datetime

_message_counter = count(1)


def new_message_id(prefix: str) -> str:
    """Ids sort by creation within a process, the uuid part keeps them unique."""
    return f"{prefix}-{next(_message_counter):06d}-{uuid4().hex[:8]}"


class SupportSender(str, Enum):
    USER = "user"
    AGENT = "agent"


class SupportMessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class ChatState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    HANDOFF_PENDING = "handoff_pending"
    CLOSED = "closed"


class SupportMessage(BaseModel):
    """Single entry of the live chat transcript.

    The timestamp is only for display, ordering is insertion order.
    """
    id: str
    sender: SupportSender
    type: SupportMessageType = SupportMessageType.TEXT
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)

    @classmethod
    def agent_text(cls, content: str, prefix: str = "agent") -> "SupportMessage":
        return cls(
            id=new_message_id(prefix),
            sender=SupportSender.AGENT,
            type=SupportMessageType.TEXT,
            content=content,
        )


class TextDelta(BaseModel):
    """Incremental fragment of the assistant reply"""
    kind: Literal["text_delta"] = "text_delta"
    text: str


class ToolInvoked(BaseModel):
    """Assistant decided to call a tool instead of replying"""
    kind: Literal["tool_invoked"] = "tool_invoked"
    name: str


StreamEvent = Union[TextDelta, ToolInvoked]


class ToolDeclaration(BaseModel):
    """Function tool offered to the assistant, parameters are always empty."""
    name: str
    description: str

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {"type": "object", "properties": {}},
            },
        }


class NotificationType(str, Enum):
    SUPPORT_REQUEST = "SUPPORT_REQUEST"


class StaffNotification(BaseModel):
    """Support request pushed to staff consoles on handoff"""
    id: str = Field(default_factory=lambda: new_message_id("notif-support"))
    type: NotificationType = NotificationType.SUPPORT_REQUEST
    title: str
    message: str
    link: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)
