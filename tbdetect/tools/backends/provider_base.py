# tbdetect/tools/backends/provider_base.py
"""
Inference Backend Interface

Purpose
-------
Define a minimal, backend-agnostic contract for producing a TB/normal
classification, plus the single helper the selector uses to invoke any
backend without caring which capability it implements.

Design
------
- Protocol `ScoringBackend` exposes `infer(tensor) -> ScoreVector`.
- Protocol `LabelingBackend` exposes `infer_labeled(image) -> DetectionResult`
  for backends (vision LLMs) that answer with a label, not probabilities.
- `run_backend(backend, request)` dispatches by duck typing: if the backend
  has a callable `infer_labeled`, use it; else an optional
  `infer_request(request)` (backends that may send the original image);
  otherwise call `infer`.

Public API
----------
ScoreVector = list[float]

class ScoringBackend(Protocol):
    name: str
    degraded: bool
    def infer(self, tensor: InputTensor) -> ScoreVector

class LabelingBackend(Protocol):
    name: str
    degraded: bool
    def infer_labeled(self, image: ImageBuffer) -> DetectionResult

def run_backend(backend, request: DetectionRequest) -> DetectionResult

Invariants & Guardrails
-----------------------
- Backends raise only BackendUnavailableError / BackendFaultError; anything
  else escaping is classified by `backend_error_guard`.
- Score vectors are converted by the codec, never by the backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, TypeAlias, Union

from tbdetect.core.codec.scores import accept_labeled_result, scores_to_result
from tbdetect.core.codec.tensor import InputTensor
from tbdetect.core.errors import backend_error_guard
from tbdetect.schemas.models import BackendKind, DetectionResult, ImageBuffer

ScoreVector: TypeAlias = list[float]


@dataclass(frozen=True)
class DetectionRequest:
    """Everything a backend may consume for one request."""

    image: ImageBuffer
    tensor: InputTensor


class ScoringBackend(Protocol):
    name: str
    kind: BackendKind
    degraded: bool

    def infer(self, tensor: InputTensor) -> ScoreVector: ...


class LabelingBackend(Protocol):
    name: str
    kind: BackendKind
    degraded: bool

    def infer_labeled(self, image: ImageBuffer) -> DetectionResult: ...


InferenceBackend: TypeAlias = Union[ScoringBackend, LabelingBackend]


def run_backend(backend: InferenceBackend, request: DetectionRequest) -> DetectionResult:
    """
    Execute one backend and convert its output to a DetectionResult.
    If the backend exposes `infer_labeled`, use it; otherwise score the tensor.
    """
    name = getattr(backend, "name", type(backend).__name__)
    degraded = bool(getattr(backend, "degraded", False))

    with backend_error_guard():
        infer_labeled = getattr(backend, "infer_labeled", None)
        if callable(infer_labeled):
            return accept_labeled_result(infer_labeled(request.image), backend=name, degraded=degraded)
        infer_request = getattr(backend, "infer_request", None)
        if callable(infer_request):
            scores = infer_request(request)
        else:
            scores = backend.infer(request.tensor)  # type: ignore[union-attr]
        return scores_to_result(scores, backend=name, degraded=degraded)
