# tests/backends/test_local_onnx.py
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
import pytest

from tbdetect.core.errors import BackendFaultError, BackendUnavailableError
from tbdetect.core.models.source import ModelSource
from tbdetect.schemas.models import Label
from tbdetect.tools.backends import local_onnx
from tbdetect.tools.backends.local_onnx import LocalModelBackend
from tbdetect.tools.backends.provider_base import run_backend
from tests.utils import png_bytes, write_model_stub


class _CountingSession:
    """Stands in for the onnxruntime session; counts constructions."""

    created = 0
    lock = threading.Lock()
    output = np.array([[0.2, 0.8]], dtype=np.float32)

    def __init__(self, blob: bytes, *, output_name=None):
        time.sleep(0.05)  # widen the race window
        with _CountingSession.lock:
            _CountingSession.created += 1
        self.input_name = "input"
        self.input_shape = [1, 3, 224, 224]
        self.output_name = output_name or "probs"
        self.output_shape = [1, 2]

    def run(self, tensor):
        return self.output


@pytest.fixture
def counting_session(monkeypatch):
    _CountingSession.created = 0
    _CountingSession.output = np.array([[0.2, 0.8]], dtype=np.float32)
    monkeypatch.setattr(local_onnx, "_OnnxSession", _CountingSession)
    return _CountingSession


def test_model_is_loaded_lazily_and_once_under_concurrency(tmp_path: Path, counting_session, request_factory):
    backend = LocalModelBackend(ModelSource(str(write_model_stub(tmp_path / "m.onnx"))))
    assert not backend.loaded

    req = request_factory()
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: run_backend(backend, req), range(16)))

    assert counting_session.created == 1
    assert backend.loaded
    assert all(r.label is Label.tuberculosis and r.confidence == 80 for r in results)
    assert all(r.backend == "local" and r.degraded is False for r in results)


def test_failed_load_is_not_cached(tmp_path: Path, counting_session, request_factory):
    model = tmp_path / "m.onnx"
    backend = LocalModelBackend(ModelSource(str(model)))
    req = request_factory()

    with pytest.raises(BackendUnavailableError, match="not found"):
        backend.infer(req.tensor)
    assert not backend.loaded

    write_model_stub(model)
    assert backend.infer(req.tensor) == pytest.approx([0.2, 0.8])
    assert counting_session.created == 1


def test_html_model_blob_never_reaches_the_parser(tmp_path: Path, counting_session, request_factory):
    model = tmp_path / "m.onnx"
    model.write_bytes(b"<html><body>403 Forbidden</body></html>")
    backend = LocalModelBackend(ModelSource(str(model)))
    with pytest.raises(BackendUnavailableError, match="HTML"):
        backend.infer(request_factory().tensor)
    assert counting_session.created == 0


def test_output_size_mismatch_is_fault(tmp_path: Path, counting_session, request_factory):
    counting_session.output = np.array([[0.1, 0.2, 0.7]], dtype=np.float32)
    backend = LocalModelBackend(ModelSource(str(write_model_stub(tmp_path / "m.onnx"))))
    with pytest.raises(BackendFaultError, match="declared shape"):
        backend.infer(request_factory().tensor)


# ---------- real onnxruntime round trip (tiny graph) ----------


def _tiny_model_bytes(size: int = 224) -> bytes:
    onnx = pytest.importorskip("onnx")
    from onnx import TensorProto, helper

    w = np.array([[0.0, 1.0], [0.0, 1.0], [0.0, 1.0]], dtype=np.float32)
    graph = helper.make_graph(
        nodes=[
            helper.make_node("GlobalAveragePool", ["input"], ["pooled"]),
            helper.make_node("Flatten", ["pooled"], ["flat"], axis=1),
            helper.make_node("MatMul", ["flat", "w"], ["logits"]),
        ],
        name="tiny_tb",
        inputs=[helper.make_tensor_value_info("input", TensorProto.FLOAT, [1, 3, size, size])],
        outputs=[helper.make_tensor_value_info("logits", TensorProto.FLOAT, [1, 2])],
        initializer=[helper.make_tensor("w", TensorProto.FLOAT, w.shape, w.flatten().tolist())],
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    onnx.checker.check_model(model)
    return model.SerializeToString()


@pytest.fixture
def tiny_model(tmp_path: Path):
    pytest.importorskip("onnxruntime")

    def _factory(size: int = 224) -> Path:
        p = tmp_path / f"tiny_{size}.onnx"
        p.write_bytes(_tiny_model_bytes(size))
        return p

    return _factory


def test_real_onnx_forward_pass(tiny_model, request_factory):
    backend = LocalModelBackend(ModelSource(str(tiny_model())))
    req = request_factory(png_bytes(64, 64, mode="L", color=255), policy="unit")

    scores = backend.infer(req.tensor)
    assert scores == pytest.approx([0.0, 3.0], abs=1e-4)

    result = run_backend(backend, req)
    assert result.label is Label.tuberculosis
    assert result.confidence == 95


def test_real_onnx_unknown_output_name_is_unavailable(tiny_model, request_factory):
    backend = LocalModelBackend(ModelSource(str(tiny_model())), output_name="nope")
    with pytest.raises(BackendUnavailableError, match="no output named"):
        backend.infer(request_factory().tensor)


def test_real_onnx_spatial_mismatch_is_fault(tiny_model, request_factory):
    backend = LocalModelBackend(ModelSource(str(tiny_model(128))))
    with pytest.raises(BackendFaultError, match="expects input"):
        backend.infer(request_factory().tensor)
