import base64
import binascii
import re
from typing import Optional, Tuple
from pydantic import BaseModel

from src.livechat.chat.errors import AttachmentTooLarge, SupportChatError

MAX_IMAGE_BYTES = 5 * 1024 * 1024

_DATA_URI_HEADER = re.compile(r"^data:(?P<mime>[^;,]+)?(?P<params>(;[^;,]+)*),")


def extract_base64(data_uri: str) -> Tuple[Optional[str], Optional[str]]:
    """Split a data URI into (mime_type, base64 payload).

    Returns (None, None) when the string is not a base64 data URI.
    """
    parts = data_uri.split(",")
    if len(parts) != 2:
        return None, None
    match = _DATA_URI_HEADER.match(parts[0] + ",")
    if not match or ";base64" not in (match.group("params") or ""):
        return None, None
    return match.group("mime"), parts[1]


def to_data_uri(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


class ImageAttachment(BaseModel):
    """One image attached to a user turn, kept as a data URI."""
    data_uri: str
    mime_type: str
    size_bytes: int

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        mime_type: str,
        max_bytes: int = MAX_IMAGE_BYTES,
        too_large_message: Optional[str] = None
    ) -> "ImageAttachment":
        """Validate size before encoding, oversized images never get a URI."""
        if len(data) > max_bytes:
            raise AttachmentTooLarge(len(data), max_bytes, too_large_message)
        return cls(
            data_uri=to_data_uri(data, mime_type),
            mime_type=mime_type,
            size_bytes=len(data),
        )

    @classmethod
    def from_data_uri(
        cls,
        data_uri: str,
        max_bytes: int = MAX_IMAGE_BYTES,
        too_large_message: Optional[str] = None
    ) -> "ImageAttachment":
        mime_type, payload = extract_base64(data_uri)
        if not mime_type or payload is None:
            raise SupportChatError("Attachment is not a base64 data URI")
        if not mime_type.startswith("image/"):
            raise SupportChatError(
                f"Unsupported attachment type: {mime_type}",
                {"mime_type": mime_type}
            )
        try:
            size = len(base64.b64decode(payload, validate=True))
        except (binascii.Error, ValueError) as e:
            raise SupportChatError(f"Invalid image data: {e}") from e
        if size > max_bytes:
            raise AttachmentTooLarge(size, max_bytes, too_large_message)
        return cls(data_uri=data_uri, mime_type=mime_type, size_bytes=size)
