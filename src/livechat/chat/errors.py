"""Error types of the live support chat.

None of these reach the hosting application: the chat session turns them
into transcript messages, or the websocket layer reports them to the
widget.
"""


class SupportChatError(Exception):
    """Base exception for all live chat errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InitializationError(SupportChatError):
    """Assistant session could not be created (missing key, bad client)."""


class StreamTransportError(SupportChatError):
    """The assistant stream failed after it was started."""


class AttachmentTooLarge(SupportChatError):
    """Image exceeds the upload limit, rejected before anything is sent.

    ``message`` is the text shown to the user.
    """

    def __init__(self, size_bytes: int, max_bytes: int, message: str = None):
        super().__init__(
            message or f"Image size must not exceed {max_bytes // (1024 * 1024)}MB.",
            {"size_bytes": size_bytes, "max_bytes": max_bytes}
        )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
