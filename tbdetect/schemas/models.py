# tbdetect/schemas/models.py

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_IMAGE_BYTES_DEFAULT = 10 * 1024 * 1024  # 10 MiB
MIN_MODEL_BYTES_DEFAULT = 1_000_000

# Patient-safety bias: when no backend produces a trustworthy answer, lean Normal at low trust.
CONSERVATIVE_FALLBACK_CONFIDENCE = 70

NormalizationName = Literal["imagenet", "unit"]
AttemptOutcome = Literal["succeeded", "unavailable", "fault", "timeout"]


# =========================
# Labels & backend kinds
# =========================


class Label(str, Enum):
    normal = "normal"
    tuberculosis = "tuberculosis"


class BackendKind(str, Enum):
    local = "local"
    remote = "remote"
    vision_llm = "vision_llm"
    heuristic = "heuristic"


# =========================
# Request / result records
# =========================


class ImageBuffer(BaseModel):
    """Raw encoded bytes of an uploaded image plus its declared MIME type."""

    data: bytes = Field(..., description="Encoded image bytes as received from the uploader.")
    mime_type: str | None = Field(None, description="Declared MIME type (informational; format is sniffed).")

    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def size(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"ImageBuffer(size={self.size}, mime_type={self.mime_type!r})"


class DetectionResult(BaseModel):
    """
    Normalized classification returned to callers.

    `confidence` is always the probability mass of the *winning* label, as an
    integer percentage. `degraded` marks results that did not come from a
    trustworthy model (heuristic backend or the conservative fallback) and must
    be shown to end users with a demo/unavailable marker.
    """

    label: Label = Field(..., description="Winning class.")
    confidence: int = Field(..., ge=0, le=100, description="Winning-label probability as a percentage.")
    degraded: bool = Field(False, description="True when produced without a trustworthy model backend.")
    backend: str | None = Field(None, description="Name of the backend that produced the result, if any.")

    model_config = ConfigDict(frozen=True, extra="ignore")

    def to_payload(self) -> dict[str, Any]:
        return {
            "prediction": self.label.value,
            "confidence": self.confidence,
            "degraded": self.degraded,
            "backend": self.backend,
        }

    def summary(self) -> str:
        flag = " [DEGRADED]" if self.degraded else ""
        src = f" via {self.backend}" if self.backend else ""
        return f"[DetectionResult] {self.label.value} ({self.confidence}%){src}{flag}"

    def __str__(self) -> str:
        return self.summary()


class AttemptRecord(BaseModel):
    """One backend attempt inside a fallback chain."""

    backend: str
    outcome: AttemptOutcome
    detail: str | None = None

    model_config = ConfigDict(frozen=True, extra="ignore")


# =========================
# Configuration
# =========================


class BackendDescriptor(BaseModel):
    """
    Identifies one configured inference backend and its connection data.
    Created once at start-up; read-only while requests are handled.
    """

    kind: BackendKind = Field(..., description="Which backend implementation to build.")
    name: str | None = Field(None, description="Unique name in the chain; defaults to the kind.")
    timeout_s: float | None = Field(None, gt=0, description="Per-attempt timeout; falls back to settings default.")

    # local
    model_path: str | None = Field(None, description="Filesystem path to an ONNX model.")
    model_url: str | None = Field(None, description="HTTP(S) URL of an ONNX model (downloaded once).")
    min_model_bytes: int = Field(MIN_MODEL_BYTES_DEFAULT, ge=0, description="Reject model blobs smaller than this.")
    output_name: str | None = Field(None, description="Model output to read; defaults to the first output.")

    # remote
    endpoint: str | None = Field(None, description="Remote inference endpoint URL.")
    payload: Literal["tensor", "image"] = Field("tensor", description="What the remote service accepts.")
    api_key_env: str | None = Field(None, description="Env var holding a bearer token / API key.")

    # vision_llm
    llm_model: str = Field("gpt-4o-mini", description="Vision-capable chat model name.")
    max_retries: int = Field(2, ge=0, le=10, description="Retries for transient vision-LLM failures.")

    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def label(self) -> str:
        return self.name or self.kind.value

    @model_validator(mode="after")
    def _check_kind_options(self) -> BackendDescriptor:
        if self.kind is BackendKind.local and not (self.model_path or self.model_url):
            raise ValueError("local backend requires model_path or model_url")
        if self.kind is BackendKind.remote and not self.endpoint:
            raise ValueError("remote backend requires endpoint")
        return self


class DetectorSettings(BaseModel):
    """Process-wide configuration for the detection core."""

    backends: list[BackendDescriptor] = Field(..., min_length=1, description="Ordered fallback chain.")
    normalization: NormalizationName = Field(
        "imagenet",
        description="Pixel normalization; must match the convention the model was exported with.",
    )
    max_image_bytes: int = Field(MAX_IMAGE_BYTES_DEFAULT, gt=0, description="Reject larger uploads before decode.")
    default_timeout_s: float = Field(20.0, gt=0, description="Per-attempt timeout when a backend sets none.")
    max_workers: int = Field(4, ge=1, le=64, description="Worker threads used to bound backend attempts.")
    demo_mode: bool = Field(False, description="Allows the heuristic (non-medical) backend in the chain.")
    fallback_confidence: int = Field(
        CONSERVATIVE_FALLBACK_CONFIDENCE, ge=0, le=100, description="Confidence reported when all backends fail."
    )

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("backends")
    @classmethod
    def _unique_names(cls, v: list[BackendDescriptor]) -> list[BackendDescriptor]:
        names = [b.label for b in v]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate backend names: {', '.join(dupes)}")
        return v

    @model_validator(mode="after")
    def _heuristic_requires_demo(self) -> DetectorSettings:
        if not self.demo_mode and any(b.kind is BackendKind.heuristic for b in self.backends):
            raise ValueError("heuristic backend is only allowed with demo_mode=True")
        return self
