# tests/utils.py
"""
Shared test factories (no pytest imports here).

Images
------
- png_bytes(w, h, mode="RGB", color=...)     → encoded PNG
- jpeg_bytes(w, h, color=...)                → encoded JPEG
- noisy_png_bytes(w, h, seed=0)              → large, poorly compressible PNG
- gray16_png_bytes(w, h)                     → 16-bit grayscale PNG

Backends
--------
- ScriptedBackend     scoring backend returning fixed scores or raising
- ScriptedLabeler     labeling backend returning a DetectionResult
- make_request(...)   DetectionRequest from image bytes
"""

from __future__ import annotations

import threading
import time
from io import BytesIO
from pathlib import Path

import numpy as np
from PIL import Image

from tbdetect.core.codec.decode import decode_and_resize
from tbdetect.core.codec.tensor import NormalizationPolicy, normalize
from tbdetect.schemas.models import BackendKind, DetectionResult, ImageBuffer
from tbdetect.tools.backends.provider_base import DetectionRequest

# =========================
# Image factories
# =========================


def png_bytes(w: int = 64, h: int = 64, *, mode: str = "RGB", color=None) -> bytes:
    if color is None:
        color = {"RGB": (128, 128, 128), "RGBA": (128, 128, 128, 200), "L": 128, "P": 3, "1": 1}.get(mode, 0)
    img = Image.new(mode, (w, h), color=color)
    buf = BytesIO()
    img.save(buf, format="PNG", compress_level=0)
    return buf.getvalue()


def jpeg_bytes(w: int = 64, h: int = 64, *, color=(128, 128, 128)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (w, h), color=color).save(buf, format="JPEG", quality=90)
    return buf.getvalue()


def noisy_png_bytes(w: int = 256, h: int = 256, *, seed: int = 0) -> bytes:
    rng = np.random.default_rng(seed)
    arr = rng.integers(0, 256, size=(h, w, 3), dtype=np.uint8)
    buf = BytesIO()
    Image.fromarray(arr).save(buf, format="PNG")
    return buf.getvalue()


def gray16_png_bytes(w: int = 48, h: int = 32) -> bytes:
    ramp = np.linspace(0, 65535, num=w * h, dtype=np.float64).reshape(h, w).astype(np.uint16)
    buf = BytesIO()
    Image.fromarray(ramp).save(buf, format="PNG")
    return buf.getvalue()


def make_request(data: bytes | None = None, *, policy: str = "imagenet") -> DetectionRequest:
    image = ImageBuffer(data=data if data is not None else png_bytes(), mime_type="image/png")
    tensor = normalize(decode_and_resize(image), NormalizationPolicy(policy))
    return DetectionRequest(image=image, tensor=tensor)


def write_model_stub(path: Path, size: int = 64) -> Path:
    """Bytes that pass the ONNX sniff (tag byte 0x08) without being a real graph."""
    path.write_bytes(b"\x08" + b"\x07" * (size - 1))
    return path


# =========================
# Fake backends
# =========================


class ScriptedBackend:
    """Scoring backend that returns `scores`, or raises `error`, after `delay_s`."""

    kind = BackendKind.local

    def __init__(self, name: str, *, scores=None, error: BaseException | None = None, delay_s: float = 0.0, degraded: bool = False):
        self.name = name
        self.scores = scores
        self.error = error
        self.delay_s = delay_s
        self.degraded = degraded
        self.calls = 0
        self._lock = threading.Lock()

    def infer(self, tensor):
        with self._lock:
            self.calls += 1
        if self.delay_s:
            time.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return list(self.scores)


class ScriptedLabeler:
    """Labeling backend returning a fixed DetectionResult."""

    kind = BackendKind.vision_llm
    degraded = False

    def __init__(self, name: str, result: DetectionResult):
        self.name = name
        self.result = result
        self.calls = 0

    def infer_labeled(self, image):
        self.calls += 1
        return self.result
