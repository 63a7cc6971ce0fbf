# tbdetect/tools/backends/__init__.py
"""
Inference backends package

Re-exports the backend protocols and implementations, so callers can do:

    from tbdetect.tools.backends import (
        LocalModelBackend,
        RemoteInferenceBackend,
        VisionDescriptionBackend,
        HeuristicBackend,
        build_backend,
    )
"""

from __future__ import annotations

# Concrete backends
from .heuristic_provider import HeuristicBackend
from .local_onnx import LocalModelBackend
from .openai_provider import VisionDescriptionBackend

# Protocols / dispatch
from .provider_base import (
    DetectionRequest,
    InferenceBackend,
    LabelingBackend,
    ScoreVector,
    ScoringBackend,
    run_backend,
)

# Descriptor → instance
from .registry import build_backend, register_backend
from .remote_provider import RemoteInferenceBackend

__all__ = [
    "DetectionRequest",
    "InferenceBackend",
    "LabelingBackend",
    "ScoreVector",
    "ScoringBackend",
    "run_backend",
    "LocalModelBackend",
    "RemoteInferenceBackend",
    "VisionDescriptionBackend",
    "HeuristicBackend",
    "build_backend",
    "register_backend",
]
