# tbdetect/tools/backends/heuristic_provider.py
"""
Heuristic (demo) backend.

Purpose
-------
Last-resort estimator that needs no model, network or SDK. It derives a
tuberculosis-probability proxy from simple intensity statistics of the
preprocessed image. It is NOT medically meaningful: every result it produces
is flagged degraded, and settings only allow it with demo_mode enabled.

Method
------
On the [0, 1] intensity tensor:
  - dark   = sum of values < 0.3, divided by the element count
  - bright = sum of values > 0.7, divided by the element count
  - contrast = |dark - bright|
Score starts at 0 and adds:
  +0.4 if dark > 0.15        (more opaque regions)
  +0.3 if contrast > 0.05    (heterogeneous pattern)
  +0.3 if bright < 0.2       (little clear lung field)
The score is returned as a single-value probability.

Notes
-----
- Deterministic; never raises. Internal errors yield FALLBACK_PROBABILITY.
"""

from __future__ import annotations

import logging

import numpy as np

from tbdetect.core.codec.tensor import InputTensor
from tbdetect.schemas.models import CONSERVATIVE_FALLBACK_CONFIDENCE, BackendKind

from .provider_base import ScoreVector

logger = logging.getLogger(__name__)

DARK_LEVEL = 0.3
BRIGHT_LEVEL = 0.7

# TB probability that maps to "normal" at the conservative fallback confidence
FALLBACK_PROBABILITY = 1.0 - CONSERVATIVE_FALLBACK_CONFIDENCE / 100.0


def intensity_stats(unit: np.ndarray) -> dict[str, float]:
    vals = unit.reshape(-1).astype(np.float64)
    n = max(vals.size, 1)
    dark = float(vals[vals < DARK_LEVEL].sum()) / n
    bright = float(vals[vals > BRIGHT_LEVEL].sum()) / n
    return {"dark": dark, "bright": bright, "contrast": abs(dark - bright)}


def heuristic_score(stats: dict[str, float]) -> float:
    score = 0.0
    if stats["dark"] > 0.15:
        score += 0.4
    if stats["contrast"] > 0.05:
        score += 0.3
    if stats["bright"] < 0.2:
        score += 0.3
    return min(score, 1.0)


class HeuristicBackend:
    """Pixel-statistics estimator; always answers, always degraded."""

    kind = BackendKind.heuristic
    degraded = True

    def __init__(self, *, name: str = "heuristic") -> None:
        self.name = name

    def infer(self, tensor: InputTensor) -> ScoreVector:
        try:
            stats = intensity_stats(tensor.to_unit_range())
            score = heuristic_score(stats)
        except Exception as e:  # noqa: BLE001 - last resort must not fail
            logger.error("[%s] heuristic failed (%s: %s); using fallback probability", self.name, type(e).__name__, e)
            return [FALLBACK_PROBABILITY]
        logger.info(
            "[%s] dark=%.3f bright=%.3f contrast=%.3f -> tb_score=%.2f",
            self.name,
            stats["dark"],
            stats["bright"],
            stats["contrast"],
            score,
        )
        return [score]
