# tbdetect/__init__.py
"""
TB Detect — chest X-ray tuberculosis screening core

Entry points:
  - build_orchestrator(settings) / DetectionOrchestrator.detect(image)
  - load_settings(path)            (JSON file + TBDETECT_* env overrides)

Everything below the orchestrator (codec, backends, selector) is importable
from its own package for callers that wire things by hand.
"""

from __future__ import annotations

from tbdetect.core.errors import (
    BackendFaultError,
    BackendUnavailableError,
    ConfigurationError,
    DecodeError,
    DetectionCancelledError,
    PayloadTooLargeError,
    TBDetectionError,
    TruncatedDataError,
)
from tbdetect.inputs.settings import load_settings
from tbdetect.orchestrators import DetectionOrchestrator, build_orchestrator
from tbdetect.schemas.models import DetectionResult, DetectorSettings, ImageBuffer, Label

__version__ = "0.1.0"

__all__ = [
    "DetectionOrchestrator",
    "build_orchestrator",
    "load_settings",
    "DetectionResult",
    "DetectorSettings",
    "ImageBuffer",
    "Label",
    "TBDetectionError",
    "DecodeError",
    "TruncatedDataError",
    "PayloadTooLargeError",
    "BackendUnavailableError",
    "BackendFaultError",
    "DetectionCancelledError",
    "ConfigurationError",
]
