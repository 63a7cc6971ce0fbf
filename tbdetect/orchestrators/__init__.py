# tbdetect/orchestrators/__init__.py
from __future__ import annotations

from .detection_orchestrator import DetectionOrchestrator, build_orchestrator
from .selector import CONSERVATIVE_FALLBACK, BackendSelector, FallbackPolicy, SelectionOutcome

__all__ = [
    "DetectionOrchestrator",
    "build_orchestrator",
    "BackendSelector",
    "FallbackPolicy",
    "SelectionOutcome",
    "CONSERVATIVE_FALLBACK",
]
