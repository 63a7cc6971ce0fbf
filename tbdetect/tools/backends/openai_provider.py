# tbdetect/tools/backends/openai_provider.py
"""
OpenAI Vision Description Backend

Purpose
-------
Ask a general-purpose vision-capable chat model to classify the X-ray and
answer with a strict JSON object. Unlike the scoring backends this one
returns a label + confidence directly (`infer_labeled`), never a probability
vector.

Environment
-----------
OPENAI_API_KEY            : required (checked at call time)
TBDETECT_VISION_MODEL     : default model name when the descriptor sets none
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import time
from typing import Any

from tbdetect.core.codec.decode import mime_for, sniff_format
from tbdetect.core.errors import BackendFaultError, BackendUnavailableError, classify_backend_error
from tbdetect.schemas.models import BackendKind, DetectionResult, ImageBuffer, Label

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a radiology assistant screening chest X-rays for tuberculosis.\n"
    "Return ONLY a raw JSON object (no code fences, no markdown, no prose):\n"
    '{"prediction": "tuberculosis" | "normal", "confidence": <integer 70-95>}\n'
    "Be conservative: answer \"normal\" unless findings consistent with TB are visible."
)
USER_PROMPT = "Classify this chest X-ray."
VISION_CONFIDENCE_MIN = 70.0
VISION_CONFIDENCE_MAX = 95.0


class VisionDescriptionBackend:
    """Labels an image with a vision LLM via the OpenAI chat completions API."""

    kind = BackendKind.vision_llm
    degraded = False

    def __init__(
        self,
        *,
        name: str = "vision_llm",
        model: str | None = None,
        timeout_s: float = 20.0,
        max_retries: int = 2,
        api_key_env: str = "OPENAI_API_KEY",
        client: Any | None = None,
    ) -> None:
        self.name = name
        self.model = model or os.getenv("TBDETECT_VISION_MODEL", "gpt-4o-mini")
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.api_key_env = api_key_env
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        api_key = os.getenv(self.api_key_env)
        if not api_key:
            raise BackendUnavailableError(f"{self.api_key_env} not set for vision backend {self.name!r}")
        try:
            from openai import OpenAI
        except ImportError as e:  # pragma: no cover
            raise BackendUnavailableError("OpenAI SDK not available. Install `openai>=1.0`.") from e
        self._client = OpenAI(api_key=api_key, max_retries=0)
        return self._client

    def infer_labeled(self, image: ImageBuffer) -> DetectionResult:
        client = self._get_client()
        data_url = _data_url(image)
        # all attempts share one timeout_s budget
        deadline = time.monotonic() + self.timeout_s

        last_err: BackendUnavailableError | None = None
        for attempt in range(self.max_retries + 1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                text = self._call_chat_completions(client, data_url, timeout_s=remaining)
                return parse_vision_json(text)
            except BackendFaultError:
                raise
            except Exception as e:  # noqa: BLE001
                err = classify_backend_error(e)
                if not isinstance(err, BackendUnavailableError):
                    raise err from e
                last_err = err
                backoff = min(0.5 * (attempt + 1), 2.0)
                if attempt >= self.max_retries or deadline - time.monotonic() <= backoff:
                    break
                logger.warning("[%s] attempt %d failed (%s); retrying", self.name, attempt + 1, err)
                time.sleep(backoff)
        if last_err is None:
            last_err = BackendUnavailableError(f"vision backend {self.name!r} got no answer within {self.timeout_s:.1f}s")
        raise last_err

    def _call_chat_completions(self, client: Any, data_url: str, *, timeout_s: float) -> str:
        resp = client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_PROMPT},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                },
            ],
            temperature=0,
            timeout=timeout_s,
        )
        return resp.choices[0].message.content or ""


# ---------- helpers ----------
def _data_url(image: ImageBuffer) -> str:
    mime = mime_for(sniff_format(image.data))
    b64 = base64.b64encode(image.data).decode("ascii")
    return f"data:{mime};base64,{b64}"


def parse_vision_json(text: str) -> DetectionResult:
    """
    Tolerant extractor for the vision model's answer:
      - Strips Markdown code fences (``` or ```json).
      - If prose surrounds the JSON, extracts the first {...} object.
      - Requires prediction in {tuberculosis, normal} and a numeric confidence.
        Confidence in (0, 1) is read as a fraction, otherwise as a percentage;
        the result is clamped to the 70-95 band the prompt asks for.

    Raises BackendFaultError on anything else.
    """
    if not isinstance(text, str) or not text.strip():
        raise BackendFaultError("vision model returned an empty response")

    s = text.strip()
    if s.startswith("```"):
        s = re.sub(r"^```(?:json)?\s*", "", s, count=1, flags=re.IGNORECASE)
        s = re.sub(r"\s*```$", "", s, count=1)

    loaded: Any = None
    try:
        loaded = json.loads(s)
    except ValueError:
        start, end = s.find("{"), s.rfind("}")
        if start != -1 and end > start:
            try:
                loaded = json.loads(s[start : end + 1])
            except ValueError:
                loaded = None

    if not isinstance(loaded, dict):
        raise BackendFaultError(f"expected a JSON object from vision model, got: {text[:200]!r}")

    raw_pred = str(loaded.get("prediction", "")).strip().lower()
    try:
        label = Label(raw_pred)
    except ValueError as e:
        raise BackendFaultError(f"vision model prediction must be 'tuberculosis' or 'normal', got {raw_pred!r}") from e

    raw_conf = loaded.get("confidence")
    try:
        conf = float(raw_conf)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise BackendFaultError(f"vision model confidence is not numeric: {raw_conf!r}") from e
    if 0.0 < conf < 1.0:
        conf *= 100.0
    if not 0.0 <= conf <= 100.0:
        raise BackendFaultError(f"vision model confidence out of range: {raw_conf!r}")
    conf = min(max(conf, VISION_CONFIDENCE_MIN), VISION_CONFIDENCE_MAX)

    return DetectionResult(label=label, confidence=int(conf + 0.5))
