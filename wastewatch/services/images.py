from __future__ import annotations

import base64
from io import BytesIO

from PIL import Image, UnidentifiedImageError


class ImageDecodeError(ValueError):
    pass


_DECODE_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    SyntaxError,
    ValueError,
)


def detect_format(data: bytes, max_pixels: int | None = None) -> str:
    """Return the Pillow format name of ``data`` or raise ImageDecodeError.

    ``max_pixels`` rejects images whose declared size exceeds it.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
            if max_pixels is not None and width * height > max_pixels:
                raise ImageDecodeError("image dimensions too large")
            img.verify()
            fmt = img.format
    except ImageDecodeError:
        raise
    except _DECODE_ERRORS as exc:
        raise ImageDecodeError("image is not decodable") from exc
    if not fmt:
        raise ImageDecodeError("image format not recognised")
    return fmt


def to_jpeg(data: bytes, max_side: int = 1024, quality: int = 85) -> bytes:
    """Re-encode any supported image as an RGB JPEG no larger than ``max_side``.

    Works on a private copy; the caller's bytes are left as they are.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            rgb = img.convert("RGB")
    except _DECODE_ERRORS as exc:
        raise ImageDecodeError("image is not decodable") from exc
    if max_side > 0:
        rgb.thumbnail((max_side, max_side))
    out = BytesIO()
    rgb.save(out, format="JPEG", quality=quality)
    return out.getvalue()


def jpeg_data_url(data: bytes, max_side: int = 1024) -> str:
    encoded = base64.b64encode(to_jpeg(data, max_side=max_side)).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"


__all__ = ["ImageDecodeError", "detect_format", "to_jpeg", "jpeg_data_url"]
