import logging
from typing import Callable, Dict, Iterator, List, Optional

from src.livechat.models.support_chat import SupportMessage

logger = logging.getLogger(__name__)

LogListener = Callable[[str, SupportMessage], None]


class MessageLog:
    """Append-only transcript of one chat widget.

    Besides append, two mutations exist: patching the content of a
    streaming message, and discarding a reserved streaming message that a
    tool call superseded. Listeners get ("appended" | "updated" | "removed",
    message) after each mutation.
    """

    def __init__(self):
        self._messages: List[SupportMessage] = []
        self._index: Dict[str, SupportMessage] = {}
        self._listeners: List[LogListener] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[SupportMessage]:
        return iter(list(self._messages))

    @property
    def messages(self) -> List[SupportMessage]:
        return list(self._messages)

    def get(self, message_id: str) -> Optional[SupportMessage]:
        return self._index.get(message_id)

    def subscribe(self, listener: LogListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: LogListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def append(self, message: SupportMessage) -> SupportMessage:
        if message.id in self._index:
            raise ValueError(f"Duplicate message id {message.id}")
        self._messages.append(message)
        self._index[message.id] = message
        self._emit("appended", message)
        return message

    def patch_content(self, message_id: str, content: str) -> bool:
        """Replace the content of one message in place, unknown id is a no-op"""
        message = self._index.get(message_id)
        if message is None:
            logger.debug(f"Patch ignored, no message {message_id}")
            return False
        message.content = content
        self._emit("updated", message)
        return True

    def discard(self, message_id: str) -> bool:
        """Remove a reserved streaming message, unknown id is a no-op"""
        message = self._index.pop(message_id, None)
        if message is None:
            return False
        self._messages.remove(message)
        self._emit("removed", message)
        return True

    def _emit(self, event: str, message: SupportMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, message)
            except Exception as e:
                logger.error(f"Message log listener failed on {event}: {e}")
