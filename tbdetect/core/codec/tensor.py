# tbdetect/core/codec/tensor.py
"""
Pixel grid → model input tensor.

The normalization convention is a single switch because exported models
differ: some were trained on raw [0, 1] inputs, others on ImageNet-style
per-channel standardization. The policy travels with the tensor so consumers
that need raw intensities (the heuristic backend) can invert it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from tbdetect.core.codec.decode import INPUT_SIZE

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)

TENSOR_SHAPE = (1, 3, INPUT_SIZE, INPUT_SIZE)


class NormalizationPolicy(str, Enum):
    imagenet = "imagenet"
    unit = "unit"


@dataclass(frozen=True)
class InputTensor:
    """Batch-of-one float32 tensor in NCHW layout."""

    data: np.ndarray
    policy: NormalizationPolicy

    def __post_init__(self) -> None:
        if self.data.shape != TENSOR_SHAPE:
            raise ValueError(f"tensor shape must be {TENSOR_SHAPE}, got {self.data.shape}")
        if self.data.dtype != np.float32:
            raise ValueError(f"tensor dtype must be float32, got {self.data.dtype}")

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.data.shape)

    def to_unit_range(self) -> np.ndarray:
        """Undo the normalization; returns a (3, H, W) float32 array in [0, 1]."""
        chw = self.data[0]
        if self.policy is NormalizationPolicy.unit:
            return chw.copy()
        mean = np.asarray(IMAGENET_MEAN, dtype=np.float32)[:, None, None]
        std = np.asarray(IMAGENET_STD, dtype=np.float32)[:, None, None]
        return np.clip(chw * std + mean, 0.0, 1.0).astype(np.float32)

    def to_nhwc(self) -> np.ndarray:
        return np.ascontiguousarray(self.data.transpose(0, 2, 3, 1))


def normalize(pixels: np.ndarray, policy: NormalizationPolicy | str = NormalizationPolicy.imagenet) -> InputTensor:
    """
    Convert an (H, W, 3) uint8 grid into a (1, 3, H, W) float32 tensor.

    Pure and deterministic. Arithmetic happens in float32 so the full 0..255
    domain is safe.
    """
    policy = NormalizationPolicy(policy)
    if pixels.shape != (INPUT_SIZE, INPUT_SIZE, 3):
        raise ValueError(f"expected pixel grid {(INPUT_SIZE, INPUT_SIZE, 3)}, got {pixels.shape}")

    arr = pixels.astype(np.float32) / np.float32(255.0)  # HWC
    if policy is NormalizationPolicy.imagenet:
        arr = (arr - np.asarray(IMAGENET_MEAN, dtype=np.float32)) / np.asarray(IMAGENET_STD, dtype=np.float32)
    chw = arr.transpose(2, 0, 1)
    return InputTensor(data=np.ascontiguousarray(chw[None, ...], dtype=np.float32), policy=policy)
