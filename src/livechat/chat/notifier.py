"""Best-effort staff notification for deposit-support handoffs."""
import asyncio
import logging
from typing import Optional, Set

from src.livechat.models.support_chat import StaffNotification
from src.livechat.websocket.manager import StaffConnectionManager

logger = logging.getLogger(__name__)


class StaffNotifier:
    """Fire-and-forget delivery of support requests to staff consoles.

    notify() never raises and never waits: delivery runs as a background
    task, failures are logged and not retried.
    """

    def __init__(self, manager: StaffConnectionManager, templates: dict):
        self.manager = manager
        self.templates = templates
        self._pending: Set[asyncio.Task] = set()

    def notify(
        self,
        message: str,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> None:
        link = None
        if user_id:
            link = self.templates["link"].format(user_id=user_id)
        notification = StaffNotification(
            title=self.templates["title"],
            message=message,
            link=link,
            session_id=session_id,
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                f"No event loop, staff notification dropped: {message}"
            )
            return
        task = loop.create_task(self._deliver(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, notification: StaffNotification) -> None:
        try:
            delivered = await self.manager.broadcast_to_staff({
                "type": "support_request",
                "notification": notification.model_dump(mode="json"),
            })
            if delivered == 0:
                logger.warning(
                    f"No staff console online for: {notification.message}"
                )
            else:
                logger.info(
                    f"Support request sent to {delivered} staff console(s)"
                )
        except Exception as e:
            logger.error(f"Staff notification failed: {e}")
