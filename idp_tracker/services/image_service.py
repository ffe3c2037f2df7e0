from __future__ import annotations

import io
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from ..utils.logger import Log

PASSTHROUGH_TYPES = {"image/jpeg", "image/jpg", "image/png"}
EXTENSIONS = {"image/jpeg": "jpg", "image/jpg": "jpg", "image/png": "png"}


class ImageService:
    """Brings uploaded images into a format the provider accepts."""

    def __init__(self, jpeg_quality: int = 90) -> None:
        self.jpeg_quality = jpeg_quality

    def normalize(self, content: bytes, content_type: str) -> Tuple[bytes, str]:
        if content_type in PASSTHROUGH_TYPES:
            return content, content_type

        Log.info(f"Converting {content_type} upload to JPEG")
        try:
            with Image.open(io.BytesIO(content)) as image:
                out = io.BytesIO()
                image.convert("RGB").save(out, format="JPEG", quality=self.jpeg_quality)
        except (UnidentifiedImageError, OSError) as exc:
            Log.warning(f"Image conversion failed, keeping original bytes: {exc}")
            return content, content_type
        return out.getvalue(), "image/jpeg"

    @staticmethod
    def extension_for(content_type: str) -> str:
        return EXTENSIONS.get(content_type, "bin")
