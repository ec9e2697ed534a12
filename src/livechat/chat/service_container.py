import logging
from datetime import datetime
from functools import partial
from typing import Callable, Dict, Optional

from src.livechat.chat.assistant_client import (
    AssistantClient,
    OpenAIAssistantClient,
)
from src.livechat.chat.chat_session import ChatSession
from src.livechat.chat.notifier import StaffNotifier
from src.livechat.utils.prompt_loader import PromptLoader, SUPPORT_CHAT_SECTIONS
from src.livechat.websocket.manager import StaffConnectionManager

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Container for all service instances with centralized initialization.

    Chat sessions are registered here only so staff consoles can address
    them; each widget connection still owns its own ChatSession.
    """

    def __init__(
        self,
        cfg,
        assistant: Optional[AssistantClient] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.cfg = cfg
        self.clock = clock
        self.prompts = None
        self.assistant = assistant
        self.staff_manager = None
        self.notifier = None
        self.active_sessions: Dict[str, ChatSession] = {}

    async def initialize(self):
        """Initialize all service components with proper dependency order."""
        try:
            self.prompts = PromptLoader.load_prompts(
                self.cfg.support_chat.prompt_name,
                required=SUPPORT_CHAT_SECTIONS,
            )
            if self.assistant is None:
                self.assistant = OpenAIAssistantClient.from_config(
                    self.cfg.assistant
                )
            self.staff_manager = StaffConnectionManager()
            self.notifier = StaffNotifier(
                self.staff_manager, self.prompts["staff_notification"]
            )
        except Exception as e:
            logger.error(f"Error initializing services: {e}")
            raise

    def create_chat_session(
        self,
        customer_id: Optional[str] = None,
        user_name: Optional[str] = None
    ) -> ChatSession:
        session = ChatSession(
            self.cfg,
            self.prompts,
            self.assistant,
            user_name=user_name,
            clock=self.clock,
        )
        session.notify = partial(
            self.notifier.notify,
            session_id=session.session_id,
            user_id=customer_id,
        )
        self.active_sessions[session.session_id] = session
        logger.info(f"Created chat session {session.session_id} for "
                    f"customer {customer_id}")
        return session

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self.active_sessions.get(session_id)

    def close_session(self, session_id: str) -> None:
        """Close and forget a chat session."""
        session = self.active_sessions.pop(session_id, None)
        if session is not None:
            session.close()

    async def cleanup(self):
        """Cleanup all resources."""
        for session_id in list(self.active_sessions):
            self.close_session(session_id)
        logger.info("Cleanup complete")
