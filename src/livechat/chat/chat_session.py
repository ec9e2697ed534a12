"""Live support chat session.

One ChatSession backs one open chat widget. It owns the transcript, the
handoff flag and the handoff timer, forwards user turns to the assistant
and streams the reply into the transcript.

States:
    IDLE -> STREAMING -> IDLE | HANDOFF_PENDING
    HANDOFF_PENDING -> IDLE (timer expired or handoff released)
    any -> CLOSED (terminal)
"""
import logging
from contextlib import aclosing
from datetime import datetime
from typing import Callable, Optional
from uuid import uuid4

from src.livechat.chat.assistant_client import AssistantClient, AssistantSession
from src.livechat.chat.errors import (
    AttachmentTooLarge,
    InitializationError,
    StreamTransportError,
)
from src.livechat.chat.handoff_timer import HandoffTimer
from src.livechat.chat.message_log import MessageLog
from src.livechat.chat.off_hours_gate import OffHoursGate
from src.livechat.models.attachment import ImageAttachment
from src.livechat.models.support_chat import (
    ChatState,
    SupportMessage,
    SupportMessageType,
    SupportSender,
    ToolDeclaration,
    ToolInvoked,
    new_message_id,
)

logger = logging.getLogger(__name__)


class ChatSession:
    def __init__(
        self,
        cfg,
        prompts: dict,
        assistant: AssistantClient,
        notify: Optional[Callable[[str], None]] = None,
        user_name: Optional[str] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.cfg = cfg.support_chat
        self.prompts = prompts
        self.texts = prompts["messages"]
        self.assistant = assistant
        self.notify = notify
        self.user_name = user_name
        self.session_id = session_id or f"support-{uuid4()}"
        self.clock = clock
        self.start_time = clock()
        self.last_interaction = self.start_time

        self.escalation_tool = ToolDeclaration(**prompts["escalation_tool"])
        self.max_image_bytes = self.cfg.max_image_bytes
        self.log = MessageLog()
        self.off_hours_gate = OffHoursGate(
            self.texts["off_hours"],
            start_hour=self.cfg.staffed_hours.start,
            end_hour=self.cfg.staffed_hours.end,
            clock=clock,
        )
        self.handoff_timer = HandoffTimer(
            self._on_handoff_timeout,
            timeout=self.cfg.handoff_timeout_seconds,
        )

        self.handoff_active = False
        self.is_agent_typing = False
        self.assistant_session: Optional[AssistantSession] = None
        self.input_text = ""
        self.image_preview: Optional[ImageAttachment] = None
        self._closed = False

        self.welcome_message = SupportMessage.agent_text(
            self.texts["welcome"], prefix="welcome"
        )
        self.log.append(self.welcome_message)

    @property
    def state(self) -> ChatState:
        if self._closed:
            return ChatState.CLOSED
        if self.is_agent_typing:
            return ChatState.STREAMING
        if self.handoff_active:
            return ChatState.HANDOFF_PENDING
        return ChatState.IDLE

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> bool:
        """Widget shown to the user. Returns True if an off-hours notice was added."""
        if self._closed:
            logger.warning(f"Open ignored, session {self.session_id} is closed")
            return False
        return self.off_hours_gate.check(self.log)

    # Input buffer

    def set_input(self, text: str) -> None:
        self.input_text = text or ""

    def attach_image(self, data: bytes, mime_type: str) -> ImageAttachment:
        """Validate and hold one image for the next turn.

        Raises:
            AttachmentTooLarge: the image exceeds the upload limit
        """
        self.image_preview = ImageAttachment.from_bytes(
            data,
            mime_type,
            max_bytes=self.max_image_bytes,
            too_large_message=self.texts["attachment_too_large"],
        )
        return self.image_preview

    def attach_image_uri(self, data_uri: str) -> ImageAttachment:
        self.image_preview = ImageAttachment.from_data_uri(
            data_uri,
            max_bytes=self.max_image_bytes,
            too_large_message=self.texts["attachment_too_large"],
        )
        return self.image_preview

    def remove_image(self) -> None:
        self.image_preview = None

    async def submit(
        self,
        text: str = "",
        image: Optional[ImageAttachment] = None
    ) -> None:
        """Fill the input buffer and send it as one turn."""
        if image is not None and image.size_bytes > self.max_image_bytes:
            raise AttachmentTooLarge(
                image.size_bytes,
                self.max_image_bytes,
                self.texts["attachment_too_large"],
            )
        self.set_input(text)
        self.image_preview = image
        await self.send_message()

    async def send_message(self) -> None:
        """Process the input buffer as one user turn."""
        turn = self.log_turn()
        if turn is not None:
            await self.run_assistant_turn(*turn)

    def log_turn(self) -> Optional[tuple]:
        """Log the input buffer and claim the assistant turn.

        User messages land in the transcript before this returns, so a
        caller may schedule the assistant call later without losing input.
        Returns (text, image) to forward, or None when the assistant is
        not called (empty input, closed, handoff, or a stream in flight).
        """
        if self._closed:
            logger.warning(f"Send ignored, session {self.session_id} is closed")
            return None
        text = self.input_text.strip()
        image = self.image_preview
        if not text and image is None:
            return None

        if image is not None:
            self.log.append(SupportMessage(
                id=new_message_id("user-img"),
                sender=SupportSender.USER,
                type=SupportMessageType.IMAGE,
                content=image.data_uri,
            ))
        if text:
            self.log.append(SupportMessage(
                id=new_message_id("user-text"),
                sender=SupportSender.USER,
                type=SupportMessageType.TEXT,
                content=text,
            ))
        self.input_text = ""
        self.image_preview = None
        self.last_interaction = self.clock()

        if self.handoff_active:
            logger.info(
                f"Session {self.session_id} waiting for staff, "
                "message not forwarded to assistant"
            )
            return None
        if self.is_agent_typing:
            logger.info(
                f"Session {self.session_id} already streaming, "
                "message logged only"
            )
            return None

        self.is_agent_typing = True
        return text or None, image

    async def run_assistant_turn(
        self,
        text: Optional[str],
        image: Optional[ImageAttachment]
    ) -> None:
        """Stream one assistant reply for a turn claimed by log_turn."""
        self.is_agent_typing = True
        try:
            if self.assistant_session is None:
                try:
                    self.assistant_session = await self.assistant.create_session(
                        self.prompts["sys_prompt"],
                        [self.escalation_tool],
                        [self.welcome_message.content],
                    )
                except InitializationError as e:
                    logger.error(f"Failed to initialize assistant session: {e}")
                    if not self._closed:
                        self.log.append(SupportMessage.agent_text(
                            self.texts["init_error"], prefix="agent-error"
                        ))
                    return
            if self._closed:
                return

            reservation = SupportMessage.agent_text("")
            self.log.append(reservation)
            await self._consume_stream(reservation, text, image)
        finally:
            self.is_agent_typing = False

    async def _consume_stream(
        self,
        reservation: SupportMessage,
        text: Optional[str],
        image: Optional[ImageAttachment]
    ) -> None:
        full_response = ""
        stream = self.assistant.stream_reply(
            self.assistant_session, text=text, image=image
        )
        try:
            async with aclosing(stream):
                async for event in stream:
                    if self._closed:
                        logger.debug(
                            f"Session {self.session_id} closed, "
                            "dropping stream event"
                        )
                        break
                    if isinstance(event, ToolInvoked):
                        if event.name == self.escalation_tool.name:
                            self.log.discard(reservation.id)
                            self._start_handoff()
                            break
                        logger.warning(f"Ignoring unknown tool {event.name}")
                        continue
                    full_response += event.text
                    self.log.patch_content(reservation.id, full_response)
        except StreamTransportError as e:
            if self._closed:
                logger.debug(f"Stream error after close ignored: {e}")
                return
            logger.error(f"Assistant stream failed: {e}")
            self.log.patch_content(
                reservation.id,
                self.texts["stream_error"].format(detail=e.message),
            )
        except Exception as e:
            if self._closed:
                logger.debug(f"Stream failure after close ignored: {e}")
                return
            logger.error(f"Unexpected assistant stream failure: {e}", exc_info=True)
            self.log.patch_content(
                reservation.id,
                self.texts["stream_error"].format(detail=str(e)),
            )

    # Handoff

    def _start_handoff(self) -> None:
        self.log.append(SupportMessage.agent_text(
            self.texts["transfer"], prefix="agent-transfer"
        ))
        self._notify_staff()
        self.handoff_active = True
        self.handoff_timer.start()
        logger.info(f"Session {self.session_id} handed off to staff")

    def _notify_staff(self) -> None:
        if self.notify is None or not self.user_name:
            logger.info("No signed-in user, staff notification skipped")
            return
        message = self.prompts["staff_notification"]["message"].format(
            user_name=self.user_name
        )
        try:
            self.notify(message)
        except Exception as e:
            logger.error(f"Staff notification failed: {e}")

    def _on_handoff_timeout(self) -> None:
        if self._closed:
            return
        self.log.append(SupportMessage.agent_text(
            self.texts["handoff_timeout"], prefix="agent-timeout"
        ))
        self.handoff_active = False
        logger.info(
            f"No staff reply for session {self.session_id}, assistant resumes"
        )

    def post_staff_message(self, text: str) -> Optional[SupportMessage]:
        """Staff reply posted into the transcript.

        While a handoff is active the fallback timer restarts, so a staff
        member who goes quiet without releasing still hands the chat back
        to the assistant after one more timeout.
        """
        if self._closed or not text.strip():
            return None
        message = self.log.append(SupportMessage(
            id=new_message_id("staff"),
            sender=SupportSender.AGENT,
            type=SupportMessageType.TEXT,
            content=text.strip(),
        ))
        if self.handoff_active:
            self.handoff_timer.start()
        self.last_interaction = self.clock()
        return message

    def release_handoff(self) -> bool:
        """Hand the conversation back to the assistant."""
        if self._closed or not self.handoff_active:
            return False
        self.handoff_timer.cancel()
        self.handoff_active = False
        logger.info(f"Session {self.session_id} released back to assistant")
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.handoff_timer.cancel()
        logger.info(f"Session {self.session_id} closed")

    def get_session_stats(self) -> dict:
        return {
            "session_id": self.session_id,
            "user_name": self.user_name,
            "state": self.state.value,
            "handoff_active": self.handoff_active,
            "start_time": self.start_time,
            "last_interaction": self.last_interaction,
            "message_count": len(self.log),
        }
