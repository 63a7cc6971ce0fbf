"""
tbdetect.core.codec
===================

Deterministic transforms around the model:
  image bytes → RGB grid → input tensor, and raw scores → DetectionResult.
"""

from __future__ import annotations

from .decode import INPUT_SIZE, decode_and_resize, mime_for, sniff_format
from .scores import accept_labeled_result, scores_to_result
from .tensor import IMAGENET_MEAN, IMAGENET_STD, TENSOR_SHAPE, InputTensor, NormalizationPolicy, normalize

__all__ = [
    # Decode
    "INPUT_SIZE",
    "decode_and_resize",
    "mime_for",
    "sniff_format",
    # Tensor
    "IMAGENET_MEAN",
    "IMAGENET_STD",
    "TENSOR_SHAPE",
    "InputTensor",
    "NormalizationPolicy",
    "normalize",
    # Scores
    "scores_to_result",
    "accept_labeled_result",
]
