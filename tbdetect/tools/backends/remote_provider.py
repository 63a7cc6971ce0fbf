# tbdetect/tools/backends/remote_provider.py
"""
Remote inference endpoint backend.

Environment
-----------
The bearer token is read from the env var named by the descriptor's
`api_key_env` (e.g. TBDETECT_REMOTE_API_KEY) at call time.

Payload modes
-------------
tensor : POST JSON {"inputs": [...flat float32...], "shape": [1, 3, 224, 224]}
image  : POST the original encoded bytes with their content type

Accepted response bodies
------------------------
- [0.1, 0.9]                               bare score list
- [[0.1, 0.9]]                             single-row batch
- {"scores"|"probabilities"|"logits"|"outputs"|"output"|"predictions": [...]}
- [{"label": "Tuberculosis", "score": 0.9}, {"label": "Normal", "score": 0.1}]
  (hosted image-classification APIs; may also be wrapped in an outer list)
"""

from __future__ import annotations

import logging
import os
from typing import Any

import requests

from tbdetect.core.codec.decode import mime_for, sniff_format
from tbdetect.core.codec.tensor import InputTensor
from tbdetect.core.errors import BackendFaultError, BackendUnavailableError, DecodeError
from tbdetect.schemas.models import BackendKind, ImageBuffer

from .provider_base import DetectionRequest, ScoreVector

logger = logging.getLogger(__name__)

_SCORE_KEYS = ("scores", "probabilities", "logits", "outputs", "output", "predictions")
_RETRYABLE_STATUS = {408, 429}
_TB_LABELS = frozenset({"tuberculosis", "tb", "abnormal", "not_normal", "label_1", "1", "positive", "tb_positive"})
_NORMAL_LABELS = frozenset({"normal", "label_0", "0", "negative", "tb_negative", "no_tb"})


class RemoteInferenceBackend:
    """Posts the tensor (or raw image) to an HTTP(S) endpoint and parses scores."""

    kind = BackendKind.remote
    degraded = False

    def __init__(
        self,
        endpoint: str,
        *,
        name: str = "remote",
        payload: str = "tensor",
        timeout_s: float = 20.0,
        api_key_env: str | None = None,
    ) -> None:
        if payload not in ("tensor", "image"):
            raise ValueError(f"payload must be 'tensor' or 'image', got {payload!r}")
        self.name = name
        self.endpoint = endpoint
        self.payload = payload
        self.timeout_s = timeout_s
        self.api_key_env = api_key_env

    def infer_request(self, request: DetectionRequest) -> ScoreVector:
        return self._post(request.tensor, request.image)

    def infer(self, tensor: InputTensor) -> ScoreVector:
        return self._post(tensor, None)

    def _post(self, tensor: InputTensor, image: ImageBuffer | None) -> ScoreVector:
        headers = self._headers()
        try:
            if self.payload == "image":
                if image is None:
                    raise BackendFaultError("image payload mode requires the original image")
                resp = requests.post(
                    self.endpoint,
                    data=image.data,
                    headers={**headers, "Content-Type": _content_type(image)},
                    timeout=self.timeout_s,
                )
            else:
                body = {"inputs": tensor.data.reshape(-1).tolist(), "shape": list(tensor.shape)}
                resp = requests.post(self.endpoint, json=body, headers=headers, timeout=self.timeout_s)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise BackendUnavailableError(f"remote endpoint unreachable: {type(e).__name__}: {e}") from e
        except requests.RequestException as e:
            raise BackendUnavailableError(f"remote request failed: {type(e).__name__}: {e}") from e

        status = resp.status_code
        if status in _RETRYABLE_STATUS or status >= 500:
            raise BackendUnavailableError(f"remote endpoint returned HTTP {status}")
        if not 200 <= status < 300:
            raise BackendFaultError(f"remote endpoint rejected request: HTTP {status} {resp.text[:200]!r}")

        try:
            body = resp.json()
        except ValueError as e:
            raise BackendFaultError(f"remote response is not JSON: {resp.text[:200]!r}") from e
        scores = parse_remote_scores(body)
        logger.debug("[%s] remote scores: %s", self.name, scores)
        return scores

    def _headers(self) -> dict[str, str]:
        hdrs = {"Accept": "application/json"}
        if self.api_key_env:
            token = os.getenv(self.api_key_env)
            if not token:
                raise BackendUnavailableError(f"{self.api_key_env} not set for remote backend {self.name!r}")
            hdrs["Authorization"] = f"Bearer {token}"
        return hdrs


def _content_type(image: ImageBuffer) -> str:
    try:
        return mime_for(sniff_format(image.data))
    except DecodeError:
        return image.mime_type or "application/octet-stream"


def parse_remote_scores(body: Any) -> ScoreVector:
    """Extract a score vector from any supported response shape. Raises BackendFaultError."""
    if isinstance(body, dict):
        for key in _SCORE_KEYS:
            if key in body:
                return parse_remote_scores(body[key])
        if "label" in body and "score" in body:
            return _labels_to_scores([body])
        raise BackendFaultError(f"remote response has no score field (keys: {sorted(body)})")

    if isinstance(body, list):
        if not body:
            raise BackendFaultError("remote response score list is empty")
        if len(body) == 1 and isinstance(body[0], list):
            return parse_remote_scores(body[0])
        if all(isinstance(x, dict) for x in body):
            return _labels_to_scores(body)
        if all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in body):
            return [float(x) for x in body]

    raise BackendFaultError(f"unparseable remote response: {str(body)[:200]!r}")


def _labels_to_scores(items: list[dict[str, Any]]) -> ScoreVector:
    """Map hosted-classifier [{label, score}] lists onto [normal, tuberculosis]."""
    normal: float | None = None
    tb: float | None = None
    for item in items:
        label = _label_key(item.get("label", ""))
        try:
            score = float(item.get("score"))  # type: ignore[arg-type]
        except (TypeError, ValueError) as e:
            raise BackendFaultError(f"non-numeric score in remote label list: {item!r}") from e
        if label in _TB_LABELS:
            tb = score
        elif label in _NORMAL_LABELS:
            normal = score
        else:
            raise BackendFaultError(f"unknown label in remote response: {item.get('label')!r}")
    if tb is None:
        return [1.0 - float(normal)]  # type: ignore[arg-type]
    if normal is None:
        return [tb]
    return [normal, tb]


def _label_key(label: Any) -> str:
    # "Not Normal" -> "not_normal", "TB-positive" -> "tb_positive"
    return "_".join(str(label).strip().lower().replace("-", " ").split())
