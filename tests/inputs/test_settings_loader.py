# tests/inputs/test_settings_loader.py
from __future__ import annotations

import json
from pathlib import Path

import pytest

from tbdetect.core.errors import ConfigurationError
from tbdetect.inputs.settings import SettingsLoader, descriptor, load_settings
from tbdetect.schemas.models import BackendKind, DetectorSettings


def _write(tmp_path: Path, data: dict, name: str = "tbdetect.json") -> Path:
    p = tmp_path / name
    p.write_text(json.dumps(data), encoding="utf-8")
    return p


def test_load_file_with_defaults(tmp_path: Path):
    p = _write(tmp_path, {"backends": [{"kind": "local", "model_path": "models/tb.onnx"}]})
    s = SettingsLoader().load(p)
    assert isinstance(s, DetectorSettings)
    assert s.normalization == "imagenet"
    assert s.max_image_bytes == 10 * 1024 * 1024
    assert s.fallback_confidence == 70
    assert s.demo_mode is False
    assert s.backends[0].kind is BackendKind.local
    assert s.backends[0].label == "local"


def test_env_overrides_apply_on_top_of_file(tmp_path: Path, monkeypatch):
    p = _write(tmp_path, {"backends": [{"kind": "local", "model_path": "a.onnx"}], "normalization": "imagenet"})
    monkeypatch.setenv("TBDETECT_NORMALIZATION", "UNIT")
    monkeypatch.setenv("TBDETECT_MAX_IMAGE_BYTES", "2048")
    monkeypatch.setenv("TBDETECT_TIMEOUT_S", "3.5")
    s = SettingsLoader().load(p)
    assert s.normalization == "unit"
    assert s.max_image_bytes == 2048
    assert s.default_timeout_s == 3.5
    assert s.backends[0].model_path == "a.onnx"


def test_from_env_builds_chain(monkeypatch):
    monkeypatch.setenv("TBDETECT_BACKENDS", "local, remote ,vision_llm,heuristic")
    monkeypatch.setenv("TBDETECT_MODEL_URL", "https://bucket.example/tb.onnx")
    monkeypatch.setenv("TBDETECT_REMOTE_ENDPOINT", "https://infer.example/tb")
    monkeypatch.setenv("TBDETECT_REMOTE_PAYLOAD", "image")
    monkeypatch.setenv("TBDETECT_VISION_MODEL", "gpt-4o")
    monkeypatch.setenv("TBDETECT_DEMO_MODE", "yes")

    s = SettingsLoader().from_env()

    kinds = [b.kind for b in s.backends]
    assert kinds == [BackendKind.local, BackendKind.remote, BackendKind.vision_llm, BackendKind.heuristic]
    local, remote, vision, _ = s.backends
    assert local.model_url == "https://bucket.example/tb.onnx" and local.model_path is None
    assert remote.payload == "image" and remote.api_key_env == "TBDETECT_REMOTE_API_KEY"
    assert vision.llm_model == "gpt-4o"
    assert s.demo_mode is True


def test_from_env_without_backends_is_error():
    with pytest.raises(ConfigurationError, match="No backends configured"):
        SettingsLoader().from_env()


def test_load_without_path_falls_back_to_env(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TBDETECT_BACKENDS", "local")
    monkeypatch.setenv("TBDETECT_MODEL_PATH", "models/tb.onnx")
    s = load_settings()
    assert s.backends[0].model_path == "models/tb.onnx"


def test_load_without_path_finds_default_file(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write(tmp_path, {"backends": [{"kind": "local", "model_path": "x.onnx", "name": "cxr"}]})
    assert load_settings().backends[0].label == "cxr"


def test_heuristic_requires_demo_mode(tmp_path: Path):
    p = _write(tmp_path, {"backends": [{"kind": "heuristic"}]})
    with pytest.raises(ConfigurationError, match="demo_mode"):
        SettingsLoader().load(p)


def test_duplicate_backend_names_rejected(tmp_path: Path):
    p = _write(
        tmp_path,
        {"backends": [{"kind": "local", "model_path": "a.onnx"}, {"kind": "local", "model_path": "b.onnx"}]},
    )
    with pytest.raises(ConfigurationError, match="duplicate"):
        SettingsLoader().load(p)


@pytest.mark.parametrize(
    "env, value",
    [
        ("TBDETECT_MAX_IMAGE_BYTES", "ten"),
        ("TBDETECT_TIMEOUT_S", "soon"),
        ("TBDETECT_BACKENDS", "local,quantum"),
        ("TBDETECT_NORMALIZATION", "zscore"),
    ],
)
def test_bad_env_values(tmp_path: Path, monkeypatch, env, value):
    p = _write(tmp_path, {"backends": [{"kind": "local", "model_path": "a.onnx"}]})
    monkeypatch.setenv(env, value)
    with pytest.raises(ConfigurationError):
        SettingsLoader().load(p)


def test_bad_files(tmp_path: Path):
    loader = SettingsLoader()
    with pytest.raises(FileNotFoundError):
        loader.load(tmp_path / "missing.json")
    yaml_file = tmp_path / "settings.yaml"
    yaml_file.write_text("backends: []", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="only .json"):
        loader.load(yaml_file)
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Invalid JSON"):
        loader.load(broken)
    with pytest.raises(ConfigurationError, match="must be an object"):
        loader.load_json("[1, 2]")


def test_with_overrides_revalidates(tmp_path: Path):
    loader = SettingsLoader()
    s = loader.load_json(json.dumps({"backends": [{"kind": "heuristic"}], "demo_mode": True}))
    assert loader.with_overrides(s) is s
    s2 = loader.with_overrides(s, normalization="unit", max_image_bytes=None)
    assert s2.normalization == "unit" and s2.max_image_bytes == s.max_image_bytes
    with pytest.raises(ConfigurationError):
        loader.with_overrides(s, demo_mode=False)


def test_load_with_overrides_replaces_only_the_chain(tmp_path: Path, monkeypatch):
    p = _write(tmp_path, {"backends": [{"kind": "local", "model_path": "a.onnx"}], "normalization": "unit"})
    monkeypatch.setenv("TBDETECT_MAX_IMAGE_BYTES", "4096")
    s = SettingsLoader().load_with_overrides(
        p, backends=[{"kind": "heuristic"}], demo_mode=True, default_timeout_s=None
    )
    assert [d.kind for d in s.backends] == [BackendKind.heuristic]
    assert s.normalization == "unit"
    assert s.max_image_bytes == 4096
    assert s.default_timeout_s == 20.0


def test_load_with_overrides_validates_once(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    loader = SettingsLoader()
    with pytest.raises(ConfigurationError, match="No backends configured"):
        loader.load_with_overrides(normalization="unit")
    # demo flag and heuristic chain arrive together, so neither is rejected alone
    s = loader.load_with_overrides(backends=[{"kind": "heuristic"}], demo_mode=True)
    assert s.demo_mode is True


def test_descriptor_helper():
    d = descriptor("remote", endpoint="https://infer.example/tb", name="gpu")
    assert d.kind is BackendKind.remote and d.label == "gpu"
    with pytest.raises(ConfigurationError):
        descriptor("remote")
