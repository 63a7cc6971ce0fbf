# tests/__init__.py
"""
Expose common test utilities so tests can import directly:
    from tests import png_bytes, ScriptedBackend
"""

from .utils import (
    ScriptedBackend,
    ScriptedLabeler,
    gray16_png_bytes,
    jpeg_bytes,
    make_request,
    noisy_png_bytes,
    png_bytes,
    write_model_stub,
)

__all__ = [
    "png_bytes",
    "jpeg_bytes",
    "noisy_png_bytes",
    "gray16_png_bytes",
    "make_request",
    "write_model_stub",
    "ScriptedBackend",
    "ScriptedLabeler",
]
