import logging
from datetime import datetime
from typing import Callable

from src.livechat.chat.message_log import MessageLog
from src.livechat.models.support_chat import SupportMessage

logger = logging.getLogger(__name__)


class OffHoursGate:
    """Posts the off-hours notice when the widget opens outside staffed hours.

    The notice is shown once per unstaffed period: an open inside the
    staffed window [start, end) re-arms it.
    """

    def __init__(
        self,
        notice: str,
        start_hour: int = 8,
        end_hour: int = 23,
        clock: Callable[[], datetime] = datetime.now
    ):
        if not 0 <= start_hour < end_hour <= 24:
            raise ValueError(
                f"Invalid staffed hours [{start_hour}, {end_hour})"
            )
        self.notice = notice
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.clock = clock
        self.notice_shown = False

    def is_off_hours(self, now: datetime = None) -> bool:
        hour = (now or self.clock()).hour
        return hour < self.start_hour or hour >= self.end_hour

    def check(self, log: MessageLog) -> bool:
        """Run the gate for one open event. Returns True if a notice was added."""
        if not self.is_off_hours():
            self.notice_shown = False
            return False
        if self.notice_shown:
            return False
        log.append(SupportMessage.agent_text(self.notice, prefix="agent-offhours"))
        self.notice_shown = True
        logger.info("Off-hours notice added to chat")
        return True
