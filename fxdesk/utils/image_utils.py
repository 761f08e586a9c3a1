from __future__ import annotations

import io
import warnings
from typing import Dict, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from fxdesk.utils.helpers.exceptions import InputError

# Leading bytes of the formats WhatsApp delivers as images.
IMAGE_SIGNATURES: Dict[str, Tuple[bytes, ...]] = {
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/png": (b"\x89PNG",),
    "image/gif": (b"GIF87a", b"GIF89a"),
    "image/webp": (b"RIFF",),
}


def detect_mime_type(data: bytes) -> Optional[str]:
    """Return the mime type implied by the file signature, if recognised."""
    if not data:
        return None
    for mime_type, signatures in IMAGE_SIGNATURES.items():
        for signature in signatures:
            if data.startswith(signature):
                if mime_type == "image/webp" and data[8:12] != b"WEBP":
                    continue
                return mime_type
    return None


def validate_image_bytes(data: bytes) -> str:
    """Reject empty or non-image payloads; return the detected mime type."""
    if not data:
        raise InputError("Image payload is empty")
    mime_type = detect_mime_type(data)
    if mime_type is None:
        raise InputError("Payload is not a JPEG, PNG, GIF or WEBP image")
    return mime_type


def load_image_from_bytes(data: bytes) -> Image.Image:
    """Load an image from a byte sequence into a PIL Image object.

    Images above Pillow's pixel limit are rejected, including the range
    where Pillow would only warn.
    """
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            image = Image.open(io.BytesIO(data))
            image.load()
    except (Image.DecompressionBombError, Image.DecompressionBombWarning) as exc:
        raise InputError(f"Image dimensions too large: {exc}") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise InputError(f"Unable to decode image: {exc}") from exc
    return image
