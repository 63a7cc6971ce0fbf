# tbdetect/tools/backends/registry.py
"""
Descriptor → backend instance.

Backends are built once at start-up from BackendDescriptors. Kinds can be
re-registered at runtime (tests, custom deployments) with `register_backend`.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeAlias

from tbdetect.core.errors import ConfigurationError
from tbdetect.core.models.source import ModelSource
from tbdetect.schemas.models import BackendDescriptor, BackendKind

from .heuristic_provider import HeuristicBackend
from .local_onnx import LocalModelBackend
from .openai_provider import VisionDescriptionBackend
from .provider_base import InferenceBackend
from .remote_provider import RemoteInferenceBackend

BackendFactory: TypeAlias = Callable[[BackendDescriptor, float], InferenceBackend]


def _build_local(d: BackendDescriptor, timeout_s: float) -> InferenceBackend:
    location = d.model_path or d.model_url
    if location is None:
        raise ConfigurationError(f"local backend {d.label!r} needs model_path or model_url")
    source = ModelSource(location, min_bytes=d.min_model_bytes, timeout_s=max(timeout_s, 60.0))
    return LocalModelBackend(source, name=d.label, output_name=d.output_name)


def _build_remote(d: BackendDescriptor, timeout_s: float) -> InferenceBackend:
    if d.endpoint is None:
        raise ConfigurationError(f"remote backend {d.label!r} needs an endpoint")
    return RemoteInferenceBackend(
        d.endpoint,
        name=d.label,
        payload=d.payload,
        timeout_s=timeout_s,
        api_key_env=d.api_key_env,
    )


def _build_vision(d: BackendDescriptor, timeout_s: float) -> InferenceBackend:
    return VisionDescriptionBackend(
        name=d.label,
        model=d.llm_model,
        timeout_s=timeout_s,
        max_retries=d.max_retries,
        api_key_env=d.api_key_env or "OPENAI_API_KEY",
    )


def _build_heuristic(d: BackendDescriptor, timeout_s: float) -> InferenceBackend:
    return HeuristicBackend(name=d.label)


_FACTORIES: dict[BackendKind, BackendFactory] = {
    BackendKind.local: _build_local,
    BackendKind.remote: _build_remote,
    BackendKind.vision_llm: _build_vision,
    BackendKind.heuristic: _build_heuristic,
}


def register_backend(kind: BackendKind, factory: BackendFactory) -> None:
    """Runtime registration for a backend kind. Call once during app/CLI init."""
    _FACTORIES[kind] = factory


def build_backend(descriptor: BackendDescriptor, *, default_timeout_s: float = 20.0) -> InferenceBackend:
    factory = _FACTORIES.get(descriptor.kind)
    if factory is None:
        raise ValueError(f"Unknown backend kind: {descriptor.kind}")
    return factory(descriptor, descriptor.timeout_s or default_timeout_s)
