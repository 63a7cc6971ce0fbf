# tbdetect/inputs/settings.py
"""
Settings loader for the detection core.

Goals
-----
- File-first configuration validated with Pydantic (DetectorSettings).
- Env-only configuration for containers/CI where no file is mounted.
- Env overrides applied on top of a file, non-destructively.

JSON shape (root = DetectorSettings)
------------------------------------
{
  "normalization": "imagenet",
  "max_image_bytes": 10485760,
  "default_timeout_s": 20,
  "demo_mode": false,
  "backends": [
    {"kind": "local", "model_path": "models/tb_model1.onnx"},
    {"kind": "remote", "endpoint": "https://infer.example.org/tb", "payload": "image",
     "api_key_env": "TBDETECT_REMOTE_API_KEY"},
    {"kind": "vision_llm", "llm_model": "gpt-4o-mini"}
  ]
}

Environment overrides
---------------------
- TBDETECT_NORMALIZATION   -> normalization ("imagenet" | "unit")
- TBDETECT_MAX_IMAGE_BYTES -> max_image_bytes (int)
- TBDETECT_TIMEOUT_S       -> default_timeout_s (float)
- TBDETECT_DEMO_MODE       -> demo_mode (1/true/yes/on)
- TBDETECT_BACKENDS        -> replaces the chain: comma list of kinds, built from
                              TBDETECT_MODEL_PATH / TBDETECT_MODEL_URL,
                              TBDETECT_REMOTE_ENDPOINT / TBDETECT_REMOTE_PAYLOAD,
                              TBDETECT_VISION_MODEL

Public API
----------
- class SettingsLoader:
    - load(path: str | Path | None) -> DetectorSettings
    - load_json(text: str) -> DetectorSettings
    - from_env() -> DetectorSettings
    - load_with_overrides(path, **kwargs) -> DetectorSettings  (file + env + caller overrides)
    - with_overrides(settings, **kwargs) -> DetectorSettings
- function load_settings(path: str | Path | None) -> DetectorSettings  (convenience)
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from tbdetect.core.errors import ConfigurationError
from tbdetect.schemas.models import BackendDescriptor, BackendKind, DetectorSettings

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class SettingsLoader:
    """
    File-first settings loader with env overrides.

    Default search (when path=None):
        1) ./tbdetect.json
        2) ./config.json
        3) environment only (from_env)
    """

    env_prefix: str = "TBDETECT_"

    # ---------- Public API ----------

    def load(self, path: str | Path | None = None) -> DetectorSettings:
        p = self._resolve_path(path)
        if p is None:
            return self.from_env()
        raw = self._read_json_file(p)
        return self._parse(self._apply_env_overrides(raw))

    def load_json(self, text: str) -> DetectorSettings:
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON payload: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError("Settings JSON root must be an object.")
        return self._parse(self._apply_env_overrides(raw))

    def from_env(self) -> DetectorSettings:
        raw = self._apply_env_overrides({})
        if "backends" not in raw:
            raise self._no_backends()
        return self._parse(raw)

    def load_with_overrides(self, path: str | Path | None = None, **updates: Any) -> DetectorSettings:
        """
        File (or env-only) settings with caller overrides layered on top, validated once.
        Overrides set to None are ignored; `backends` replaces the whole chain.
        """
        p = self._resolve_path(path)
        raw = self._read_json_file(p) if p is not None else {}
        data = self._apply_env_overrides(raw)
        data.update({k: v for k, v in updates.items() if v is not None})
        if "backends" not in data:
            raise self._no_backends()
        return self._parse(data)

    def with_overrides(self, settings: DetectorSettings, **updates: Any) -> DetectorSettings:
        """Return a *new*, re-validated DetectorSettings with non-null overrides applied."""
        clean = {k: v for k, v in updates.items() if v is not None}
        if not clean:
            return settings
        data = settings.model_dump()
        data.update(clean)
        return self._parse(data)

    # ---------- Internals ----------

    def _env(self, key: str) -> str | None:
        val = os.getenv(self.env_prefix + key)
        return val.strip() if val and val.strip() else None

    def _resolve_path(self, path: str | Path | None) -> Path | None:
        if path is not None:
            p = Path(path)
            if not p.exists():
                raise FileNotFoundError(f"Settings file not found: {p}")
            return p
        for candidate in (Path("tbdetect.json"), Path("config.json")):
            if candidate.exists():
                return candidate
        return None

    def _read_json_file(self, p: Path) -> dict[str, Any]:
        if p.suffix.lower() != ".json":
            raise ConfigurationError(f"Unsupported settings format for {p.name}; only .json is supported.")
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {p}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Settings JSON root must be an object ({p}).")
        return raw

    def _apply_env_overrides(self, raw: dict[str, Any]) -> dict[str, Any]:
        data = dict(raw)
        normalization = self._env("NORMALIZATION")
        if normalization is not None:
            data["normalization"] = normalization.lower()
        max_bytes = self._env("MAX_IMAGE_BYTES")
        if max_bytes is not None:
            data["max_image_bytes"] = _as_int(self.env_prefix + "MAX_IMAGE_BYTES", max_bytes)
        timeout = self._env("TIMEOUT_S")
        if timeout is not None:
            data["default_timeout_s"] = _as_float(self.env_prefix + "TIMEOUT_S", timeout)
        demo = self._env("DEMO_MODE")
        if demo is not None:
            data["demo_mode"] = demo.lower() in _TRUTHY
        kinds = self._env("BACKENDS")
        if kinds is not None:
            data["backends"] = [self._descriptor_from_env(kind) for kind in _split_kinds(kinds)]
        return data

    def _descriptor_from_env(self, kind: str) -> dict[str, Any]:
        try:
            k = BackendKind(kind)
        except ValueError as e:
            valid = ", ".join(b.value for b in BackendKind)
            raise ConfigurationError(f"Unknown backend kind {kind!r} in {self.env_prefix}BACKENDS (valid: {valid})") from e

        d: dict[str, Any] = {"kind": k.value}
        if k is BackendKind.local:
            d["model_path"] = self._env("MODEL_PATH")
            d["model_url"] = self._env("MODEL_URL")
        elif k is BackendKind.remote:
            d["endpoint"] = self._env("REMOTE_ENDPOINT")
            d["payload"] = self._env("REMOTE_PAYLOAD") or "tensor"
            d["api_key_env"] = self.env_prefix + "REMOTE_API_KEY"
        elif k is BackendKind.vision_llm:
            model = self._env("VISION_MODEL")
            if model is not None:
                d["llm_model"] = model
        return d

    def _no_backends(self) -> ConfigurationError:
        return ConfigurationError(
            f"No backends configured. Set {self.env_prefix}BACKENDS (e.g. 'local') and "
            f"{self.env_prefix}MODEL_PATH, or provide a settings file."
        )

    def _parse(self, data: dict[str, Any]) -> DetectorSettings:
        try:
            return DetectorSettings.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid detector settings: {e}") from e


def _split_kinds(v: str) -> list[str]:
    return [k.strip().lower() for k in v.split(",") if k.strip()]


def _as_int(key: str, v: str) -> int:
    try:
        return int(v)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {v!r}") from e


def _as_float(key: str, v: str) -> float:
    try:
        return float(v)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got {v!r}") from e


def load_settings(path: str | Path | None = None) -> DetectorSettings:
    return SettingsLoader().load(path)


def descriptor(kind: BackendKind | str, **options: Any) -> BackendDescriptor:
    """Shorthand for building one validated BackendDescriptor in code."""
    try:
        return BackendDescriptor(kind=BackendKind(kind), **options)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid backend descriptor: {e}") from e
