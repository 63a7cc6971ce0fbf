# tbdetect/core/models/__init__.py
from __future__ import annotations

from .source import ONNX_TAG_BYTE, ModelSource, sniff_model_bytes

__all__ = ["ONNX_TAG_BYTE", "ModelSource", "sniff_model_bytes"]
