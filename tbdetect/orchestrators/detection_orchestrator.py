# tbdetect/orchestrators/detection_orchestrator.py
"""
Detection Orchestrator — the single entry point for collaborators.

    image bytes ─▶ size/empty checks ─▶ decode_and_resize ─▶ normalize
                ─▶ BackendSelector (fallback chain) ─▶ DetectionResult

Owns no per-request state, so one instance serves concurrent requests.
Persistence, auth and HTTP concerns stay with the caller.
"""

from __future__ import annotations

import logging
import mimetypes
import threading
from pathlib import Path

from tbdetect.core.codec.decode import decode_and_resize
from tbdetect.core.codec.tensor import NormalizationPolicy, normalize
from tbdetect.core.errors import DecodeError, PayloadTooLargeError
from tbdetect.schemas.models import MAX_IMAGE_BYTES_DEFAULT, DetectionResult, DetectorSettings, ImageBuffer
from tbdetect.tools.backends.provider_base import DetectionRequest
from tbdetect.tools.backends.registry import build_backend

from .selector import BackendSelector, FallbackPolicy, SelectionOutcome

logger = logging.getLogger(__name__)


class DetectionOrchestrator:
    def __init__(
        self,
        selector: BackendSelector,
        *,
        normalization: NormalizationPolicy | str = NormalizationPolicy.imagenet,
        max_image_bytes: int = MAX_IMAGE_BYTES_DEFAULT,
    ) -> None:
        self.selector = selector
        self.normalization = NormalizationPolicy(normalization)
        self.max_image_bytes = max_image_bytes

    def detect(
        self,
        image: ImageBuffer | bytes,
        *,
        mime_type: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> DetectionResult:
        """
        Classify one chest X-ray.

        Raises DecodeError / TruncatedDataError / PayloadTooLargeError for bad
        input, DetectionCancelledError if `cancel_event` is set mid-flight.
        Backend failures never raise: they end in a degraded fallback result.
        """
        return self.detect_with_trace(image, mime_type=mime_type, cancel_event=cancel_event).result

    def detect_with_trace(
        self,
        image: ImageBuffer | bytes,
        *,
        mime_type: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> SelectionOutcome:
        """Like detect(), but also returns the per-backend attempt log."""
        buf = image if isinstance(image, ImageBuffer) else ImageBuffer(data=bytes(image), mime_type=mime_type)
        self._validate_size(buf)

        pixels = decode_and_resize(buf)
        tensor = normalize(pixels, self.normalization)

        outcome = self.selector.select(DetectionRequest(image=buf, tensor=tensor), cancel_event=cancel_event)
        if outcome.result.degraded:
            logger.warning("degraded result (not a trustworthy model answer): %s", outcome.result)
        return outcome

    def detect_path(self, path: str | Path, *, cancel_event: threading.Event | None = None) -> DetectionResult:
        return self.detect_path_with_trace(path, cancel_event=cancel_event).result

    def detect_path_with_trace(
        self, path: str | Path, *, cancel_event: threading.Event | None = None
    ) -> SelectionOutcome:
        # size check before reading so oversized files never enter memory
        p = Path(path)
        size = p.stat().st_size
        if size > self.max_image_bytes:
            raise PayloadTooLargeError(f"{p.name} is {size} bytes (max {self.max_image_bytes})")
        mime, _ = mimetypes.guess_type(p.name)
        return self.detect_with_trace(ImageBuffer(data=p.read_bytes(), mime_type=mime), cancel_event=cancel_event)

    def close(self) -> None:
        self.selector.close()

    def _validate_size(self, buf: ImageBuffer) -> None:
        if buf.size == 0:
            raise DecodeError("empty image payload")
        if buf.size > self.max_image_bytes:
            raise PayloadTooLargeError(f"image is {buf.size} bytes (max {self.max_image_bytes})")


def build_orchestrator(settings: DetectorSettings) -> DetectionOrchestrator:
    """Wire backends, selector and codec policy from validated settings."""
    backends = [build_backend(d, default_timeout_s=settings.default_timeout_s) for d in settings.backends]
    # selector waits a little longer than the backend's own request timeout
    timeouts = {d.label: (d.timeout_s or settings.default_timeout_s) + 5.0 for d in settings.backends}
    selector = BackendSelector(
        backends,
        policy=FallbackPolicy(confidence=settings.fallback_confidence),
        default_timeout_s=settings.default_timeout_s,
        timeouts=timeouts,
        max_workers=settings.max_workers,
    )
    logger.info(
        "detector ready: chain=[%s] normalization=%s demo_mode=%s",
        ", ".join(d.label for d in settings.backends),
        settings.normalization,
        settings.demo_mode,
    )
    return DetectionOrchestrator(
        selector,
        normalization=settings.normalization,
        max_image_bytes=settings.max_image_bytes,
    )
