# tbdetect/tools/backends/local_onnx.py
"""
Local ONNX model backend.

The model blob is fetched and validated once, then an onnxruntime session is
created lazily on first use and shared read-only by all later requests. The
lock makes concurrent first callers wait for a single load instead of racing
to build duplicate sessions. Failed loads are not cached, so a later request
can retry once the model source recovers.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Any

import numpy as np

from tbdetect.core.codec.decode import INPUT_SIZE
from tbdetect.core.codec.tensor import InputTensor
from tbdetect.core.errors import BackendFaultError, BackendUnavailableError
from tbdetect.core.models.source import ModelSource
from tbdetect.schemas.models import BackendKind

from .provider_base import ScoreVector

logger = logging.getLogger(__name__)


class _OnnxSession:
    """onnxruntime session plus the input/output metadata we need per call. CPU-only."""

    def __init__(self, blob: bytes, *, output_name: str | None = None) -> None:
        try:
            import onnxruntime as ort
        except ImportError as e:  # pragma: no cover
            raise BackendUnavailableError("onnxruntime not available; install it to use the local backend") from e

        try:
            self.sess = ort.InferenceSession(blob, providers=["CPUExecutionProvider"])
        except Exception as e:  # noqa: BLE001 - onnxruntime raises its own Fail/InvalidGraph types
            raise BackendUnavailableError(f"could not parse ONNX model: {type(e).__name__}: {e}") from e

        inputs = self.sess.get_inputs()
        if not inputs:
            raise BackendUnavailableError("ONNX model has no inputs")
        self.input_name = inputs[0].name
        ishape = list(inputs[0].shape)
        # ishape could be [1, 3, H, W] or [1, H, W, 3]
        self.nchw = True
        if len(ishape) == 4 and ishape[-1] == 3 and ishape[1] != 3:
            self.nchw = False
        spatial = ishape[2:4] if self.nchw else ishape[1:3]
        self.input_shape = ishape
        self._spatial_ok = all(not isinstance(d, int) or d == INPUT_SIZE for d in spatial)

        outs = self.sess.get_outputs()
        if not outs:
            raise BackendUnavailableError("ONNX model has no outputs")
        names = [o.name for o in outs]
        if output_name is not None and output_name not in names:
            raise BackendUnavailableError(f"model has no output named {output_name!r} (outputs: {names})")
        self.output_name = output_name or names[0]
        self.output_shape = list(outs[names.index(self.output_name)].shape)

    def run(self, tensor: InputTensor) -> np.ndarray:
        if not self._spatial_ok:
            raise BackendFaultError(f"model expects input {self.input_shape}, pipeline produces {list(tensor.shape)}")
        x = tensor.data if self.nchw else tensor.to_nhwc()
        try:
            pred = self.sess.run([self.output_name], {self.input_name: x})[0]
        except Exception as e:  # noqa: BLE001
            raise BackendFaultError(f"forward pass failed: {type(e).__name__}: {e}") from e
        return np.asarray(pred)


def _declared_size(shape: list[Any]) -> int | None:
    """Flat element count implied by a declared shape; symbolic dims count as 1 (batch)."""
    dims = [d if isinstance(d, int) and d > 0 else 1 for d in shape]
    return math.prod(dims) if dims else None


class LocalModelBackend:
    """Runs a forward pass against a locally loaded ONNX model."""

    kind = BackendKind.local
    degraded = False

    def __init__(self, source: ModelSource, *, name: str = "local", output_name: str | None = None) -> None:
        self.name = name
        self._source = source
        self._output_name = output_name
        self._session: _OnnxSession | None = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def _ensure_session(self) -> _OnnxSession:
        session = self._session
        if session is not None:
            return session

        with self._lock:
            if self._session is None:
                logger.info("[%s] loading model from %s", self.name, self._source.location)
                blob = self._source.read()
                self._session = _OnnxSession(blob, output_name=self._output_name)
                logger.info(
                    "[%s] model ready: input=%s %s, output=%s %s",
                    self.name,
                    self._session.input_name,
                    self._session.input_shape,
                    self._session.output_name,
                    self._session.output_shape,
                )
            return self._session

    def infer(self, tensor: InputTensor) -> ScoreVector:
        session = self._ensure_session()
        pred = session.run(tensor)

        expected = _declared_size(session.output_shape)
        if expected is not None and pred.size != expected:
            raise BackendFaultError(
                f"output {session.output_name!r} declared shape {session.output_shape} but produced {list(pred.shape)}"
            )
        flat = pred.reshape(-1).astype(np.float64)
        logger.debug("[%s] raw output: %s", self.name, flat.tolist())
        return [float(v) for v in flat]
