import base64
import binascii
import re
from typing import Optional, Tuple

DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.+)$", re.DOTALL)
DEFAULT_CONTENT_TYPE = "image/jpeg"
WHITESPACE_RE = re.compile(r"\s+")


def decode_image_data(raw: Optional[str], max_size: int) -> Tuple[bytes, str]:
    """Decode a base64 string or data URL into bytes and a MIME type.

    Raises ValueError for missing, undecodable, or oversized input.
    """
    if not raw or not raw.strip():
        raise ValueError("imageData is required")

    content_type = DEFAULT_CONTENT_TYPE
    payload = raw.strip()
    match = DATA_URL_RE.match(payload)
    if match:
        content_type = match.group("mime").lower()
        payload = match.group("data")

    # accept line-wrapped base64
    payload = WHITESPACE_RE.sub("", payload)
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("imageData is not valid base64")
    return validate_image_bytes(content, max_size), content_type


def validate_image_bytes(content: bytes, max_size: int) -> bytes:
    if not content:
        raise ValueError("imageData is required")
    if len(content) > max_size:
        raise ValueError(f"Image too large. Max {max_size // (1024 * 1024)}MB")
    return content
