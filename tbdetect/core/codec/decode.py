# tbdetect/core/codec/decode.py
"""
Image decode + fixed-size resize.

Format is detected from the leading magic bytes, never from the file name or
the declared MIME type. Only JPEG and PNG are decoded; DICOM is recognised so
it can be rejected with a clear message.
"""

from __future__ import annotations

import io
import logging
from typing import Literal

import numpy as np
from PIL import Image, UnidentifiedImageError

from tbdetect.core.errors import DecodeError, TruncatedDataError
from tbdetect.schemas.models import ImageBuffer

logger = logging.getLogger(__name__)

INPUT_SIZE = 224

ImageFormat = Literal["jpeg", "png"]

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_JPEG_SIGNATURE = b"\xff\xd8\xff"
_DICOM_PREAMBLE = 128
_DICOM_MAGIC = b"DICM"

# signature + IHDR chunk (length, type, 13 data bytes, crc)
_PNG_MIN_BYTES = len(_PNG_SIGNATURE) + 4 + 4 + 13 + 4
# SOI + one marker segment header
_JPEG_MIN_BYTES = 4

_MIME_FOR: dict[ImageFormat, str] = {"jpeg": "image/jpeg", "png": "image/png"}


def sniff_format(data: bytes) -> ImageFormat:
    """
    Identify the encoding from magic bytes.

    Raises DecodeError for unsupported/unknown signatures and
    TruncatedDataError when a known signature is cut short.
    """
    if not data:
        raise DecodeError("empty image payload")

    if data.startswith(_PNG_SIGNATURE):
        if len(data) < _PNG_MIN_BYTES:
            raise TruncatedDataError(f"PNG header needs {_PNG_MIN_BYTES} bytes, got {len(data)}")
        return "png"
    if _PNG_SIGNATURE.startswith(data[: len(_PNG_SIGNATURE)]) and len(data) < len(_PNG_SIGNATURE):
        raise TruncatedDataError(f"PNG signature truncated at {len(data)} bytes")

    if data.startswith(_JPEG_SIGNATURE):
        if len(data) < _JPEG_MIN_BYTES:
            raise TruncatedDataError(f"JPEG header needs {_JPEG_MIN_BYTES} bytes, got {len(data)}")
        return "jpeg"
    if _JPEG_SIGNATURE.startswith(data[: len(_JPEG_SIGNATURE)]) and len(data) < len(_JPEG_SIGNATURE):
        raise TruncatedDataError(f"JPEG signature truncated at {len(data)} bytes")

    if data[_DICOM_PREAMBLE : _DICOM_PREAMBLE + 4] == _DICOM_MAGIC:
        raise DecodeError("DICOM input is not supported; export the study as PNG or JPEG")

    head = data[:8].hex(" ")
    raise DecodeError(f"unsupported image format (magic bytes: {head})")


def mime_for(fmt: ImageFormat) -> str:
    return _MIME_FOR[fmt]


def decode_and_resize(image: ImageBuffer, size: int = INPUT_SIZE) -> np.ndarray:
    """
    Decode `image` into an RGB uint8 grid and stretch it to `size`×`size`.

    Aspect ratio is not preserved. Alpha is dropped; grayscale and palette
    images are expanded to three channels.

    Returns:
        numpy array of shape (size, size, 3), dtype uint8.
    """
    fmt = sniff_format(image.data)

    declared = (image.mime_type or "").split(";", 1)[0].strip().lower()
    if declared and declared != mime_for(fmt) and not (declared == "image/jpg" and fmt == "jpeg"):
        logger.warning("declared MIME %s does not match sniffed format %s; using %s", declared, fmt, fmt)

    try:
        with Image.open(io.BytesIO(image.data), formats=[fmt.upper()]) as img:
            img.load()
            rgb = _to_rgb(img)
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise DecodeError(f"could not decode {fmt}: {e}") from e
    except (OSError, SyntaxError, EOFError) as e:
        # signature matched but the stream ended or broke mid-way
        raise TruncatedDataError(f"{fmt} stream is truncated or corrupt: {e}") from e

    resized = rgb.resize((size, size), resample=Image.Resampling.BILINEAR)
    arr = np.asarray(resized, dtype=np.uint8)
    logger.debug("decoded %s %sx%s -> %s", fmt, rgb.width, rgb.height, arr.shape)
    return arr


def _to_rgb(img: Image.Image) -> Image.Image:
    if img.mode == "RGB":
        return img.copy()
    if img.mode in ("I;16", "I;16B", "I;16L", "I"):
        # 16-bit grayscale X-rays: rescale to 8 bits before expanding
        arr = np.asarray(img, dtype=np.float64)
        lo, hi = float(arr.min()), float(arr.max())
        scaled = np.zeros_like(arr) if hi <= lo else (arr - lo) * (255.0 / (hi - lo))
        return Image.fromarray(scaled.astype(np.uint8)).convert("RGB")
    return img.convert("RGB")
