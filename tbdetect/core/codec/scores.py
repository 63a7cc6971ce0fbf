# tbdetect/core/codec/scores.py
"""
Raw model output → DetectionResult.

Class order for two-value outputs is [normal, tuberculosis]. Confidence is the
probability mass of the winning label, rounded half-up to an integer percent.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from tbdetect.core.errors import MalformedOutputError
from tbdetect.schemas.models import DetectionResult, Label

DECISION_THRESHOLD = 0.5
_PROBABILITY_SUM_TOLERANCE = 0.01


def scores_to_result(scores: Sequence[float], *, backend: str | None = None, degraded: bool = False) -> DetectionResult:
    """
    Convert a 1- or 2-value score vector into a labelled result.

    - 2 values summing to 1 (±0.01), both in [0, 1]: probabilities as-is.
    - 2 values otherwise: logits → softmax.
    - 1 value: already-sigmoided tuberculosis probability.
    - anything else: MalformedOutputError.
    """
    values = _as_floats(scores)

    if len(values) == 2:
        if _is_distribution(values):
            p_tb = values[1]
        else:
            p_tb = _softmax(values)[1]
    elif len(values) == 1:
        p_tb = values[0]
        if not 0.0 <= p_tb <= 1.0:
            raise MalformedOutputError(f"single score must be a probability in [0, 1], got {p_tb}")
    else:
        raise MalformedOutputError(f"score vector must have 1 or 2 values, got {len(values)}")

    label = Label.tuberculosis if p_tb > DECISION_THRESHOLD else Label.normal
    winning = p_tb if label is Label.tuberculosis else 1.0 - p_tb
    return DetectionResult(
        label=label,
        confidence=_round_half_up(100.0 * winning),
        degraded=degraded,
        backend=backend,
    )


def accept_labeled_result(result: DetectionResult, *, backend: str, degraded: bool = False) -> DetectionResult:
    """
    Entry point for backends that return labels directly instead of scores.
    The result is re-validated and stamped with its source.
    """
    if not isinstance(result, DetectionResult):
        raise MalformedOutputError(f"labeled backend returned {type(result).__name__}, expected DetectionResult")
    return DetectionResult(
        label=result.label,
        confidence=result.confidence,
        degraded=degraded or result.degraded,
        backend=backend,
    )


# ---------- helpers ----------


def _as_floats(scores: Sequence[float]) -> list[float]:
    try:
        values = [float(s) for s in scores]
    except (TypeError, ValueError) as e:
        raise MalformedOutputError(f"score vector is not numeric: {e}") from e
    if any(not math.isfinite(v) for v in values):
        raise MalformedOutputError(f"score vector contains non-finite values: {values}")
    return values


def _is_distribution(values: list[float]) -> bool:
    return abs(values[0] + values[1] - 1.0) < _PROBABILITY_SUM_TOLERANCE and all(0.0 <= v <= 1.0 for v in values)


def _softmax(values: list[float]) -> list[float]:
    m = max(values)
    exps = [math.exp(v - m) for v in values]
    total = sum(exps)
    return [e / total for e in exps]


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))
