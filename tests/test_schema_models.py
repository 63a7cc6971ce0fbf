# tests/test_schema_models.py
from __future__ import annotations

import pytest
from pydantic import ValidationError

from tbdetect.schemas.models import (
    AttemptRecord,
    BackendDescriptor,
    BackendKind,
    DetectionResult,
    DetectorSettings,
    ImageBuffer,
    Label,
)


def test_detection_result_payload_and_summary():
    r = DetectionResult(label=Label.normal, confidence=70, degraded=True)
    assert r.to_payload() == {"prediction": "normal", "confidence": 70, "degraded": True, "backend": None}
    assert str(r) == "[DetectionResult] normal (70%) [DEGRADED]"


@pytest.mark.parametrize("confidence", [-1, 101])
def test_confidence_bounds(confidence):
    with pytest.raises(ValidationError):
        DetectionResult(label=Label.tuberculosis, confidence=confidence)


def test_results_are_immutable():
    r = DetectionResult(label=Label.normal, confidence=80)
    with pytest.raises(ValidationError):
        r.confidence = 10  # type: ignore[misc]


def test_image_buffer_size_and_repr():
    buf = ImageBuffer(data=b"\x89PNG1234", mime_type="image/png")
    assert buf.size == 8
    assert "size=8" in repr(buf)


def test_attempt_outcome_is_closed_set():
    assert AttemptRecord(backend="a", outcome="timeout").outcome == "timeout"
    with pytest.raises(ValidationError):
        AttemptRecord(backend="a", outcome="exploded")


def test_settings_need_at_least_one_backend():
    with pytest.raises(ValidationError):
        DetectorSettings(backends=[])


def test_descriptor_label_defaults_to_kind():
    d = BackendDescriptor(kind=BackendKind.vision_llm)
    assert d.label == "vision_llm"
    assert d.llm_model == "gpt-4o-mini"
    assert BackendDescriptor(kind=BackendKind.vision_llm, name="gpt").label == "gpt"
