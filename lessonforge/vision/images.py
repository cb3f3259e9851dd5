"""
Decode page images posted as data URLs (quiz sets, answer keys).

Design:
- Accept only PNG/JPEG/WebP; anything else is a caller error.
- Reject decoded payloads above the upload byte limit before Pillow sees them.
- Open the image with Pillow to reject truncated or disguised payloads and
  to learn its pixel dimensions.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from io import BytesIO
import re
from typing import Optional

from PIL import Image, UnidentifiedImageError

from lessonforge.curriculum.errors import PayloadTooLargeError, ValidationError

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[a-z]+/[a-z0-9.+-]+);base64,(?P<data>.+)$", re.IGNORECASE | re.DOTALL)
ALLOWED_IMAGE_MIME = {"image/png", "image/jpeg", "image/webp"}


@dataclass(frozen=True)
class DecodedImage:
    mime: str
    data: bytes
    width: int
    height: int


def decode_data_url(data_url: str, *, max_bytes: Optional[int] = None) -> DecodedImage:
    match = _DATA_URL_RE.match((data_url or "").strip())
    if not match:
        raise ValidationError("invalid_data_url")
    mime = match.group("mime").lower()
    if mime not in ALLOWED_IMAGE_MIME:
        raise ValidationError(f"unsupported image type {mime}")
    try:
        raw = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("invalid_base64") from exc
    if max_bytes and len(raw) > max_bytes:
        raise PayloadTooLargeError("page image size", limit=max_bytes, observed=len(raw))
    try:
        with Image.open(BytesIO(raw)) as im:
            width, height = im.size
            im.verify()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError("unreadable_image") from exc
    return DecodedImage(mime=mime, data=raw, width=int(width), height=int(height))


__all__ = ["ALLOWED_IMAGE_MIME", "DecodedImage", "decode_data_url"]
