import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_HANDOFF_TIMEOUT = 120.0


class HandoffTimer:
    """Single-shot, cancellable delayed action bound to one handoff.

    Backed by an event loop timer handle, so a pending timer never keeps
    the process alive on its own. start() always cancels the running timer
    first, two timers never coexist.
    """

    def __init__(
        self,
        on_expire: Callable[[], None],
        timeout: float = DEFAULT_HANDOFF_TIMEOUT
    ):
        self.on_expire = on_expire
        self.timeout = timeout
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout, self._fire)
        logger.info(f"Handoff timer started ({self.timeout}s)")

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        logger.info("Handoff timer cancelled")
        return True

    def _fire(self) -> None:
        self._handle = None
        logger.info("Handoff timer expired")
        try:
            self.on_expire()
        except Exception as e:
            logger.error(f"Handoff expiry action failed: {e}")
