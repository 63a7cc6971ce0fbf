# tbdetect/core/models/source.py
"""
Model blob loading + validation.

A model can live on disk or behind a URL (object storage). Either way the
bytes are sniffed before any parser sees them: storage buckets answer missing
or private objects with an HTML page, and partial downloads produce tiny files.

ONNX files are serialized ModelProto messages whose first field is
`ir_version` (field 1, varint), so a valid blob starts with the tag byte 0x08.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import requests

from tbdetect.core.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

ONNX_TAG_BYTE = 0x08
_HTML_FIRST_BYTE = 0x3C  # "<"
_DOWNLOAD_TIMEOUT_S = 60.0
_STREAM_CHUNK = 1024 * 1024  # 1 MiB


def sniff_model_bytes(blob: bytes, *, min_bytes: int = 0) -> None:
    """
    Reject blobs that cannot be an ONNX model. Raises BackendUnavailableError.

    Order matters: the HTML check runs first so an error page is reported as
    such even when it is also too small.
    """
    if not blob:
        raise BackendUnavailableError("model blob is empty")
    head = blob[:4].hex(" ")
    if blob.lstrip()[:1] == bytes([_HTML_FIRST_BYTE]):
        raise BackendUnavailableError(f"received HTML instead of a model file (first bytes: {head})")
    if len(blob) < min_bytes:
        raise BackendUnavailableError(f"model file too small: {len(blob)} bytes (< {min_bytes}); may be corrupted")
    if blob[0] != ONNX_TAG_BYTE:
        raise BackendUnavailableError(f"not a binary ONNX model (first bytes: {head})")


@dataclass(frozen=True)
class ModelSource:
    """Where the model bytes come from: a local path or an HTTP(S) URL."""

    location: str
    min_bytes: int = 0
    timeout_s: float = _DOWNLOAD_TIMEOUT_S

    @property
    def is_remote(self) -> bool:
        return urlparse(self.location).scheme in ("http", "https")

    def read(self) -> bytes:
        """Fetch and validate the model bytes. Raises BackendUnavailableError."""
        blob = self._download() if self.is_remote else self._read_file()
        sniff_model_bytes(blob, min_bytes=self.min_bytes)
        logger.info("model loaded from %s: %d bytes (%.2f MB)", self.location, len(blob), len(blob) / 1024 / 1024)
        return blob

    def _read_file(self) -> bytes:
        p = Path(self.location)
        if not p.exists() or not p.is_file():
            raise BackendUnavailableError(f"model file not found: {p}")
        try:
            return p.read_bytes()
        except OSError as e:
            raise BackendUnavailableError(f"could not read model file {p}: {e}") from e

    def _download(self) -> bytes:
        try:
            with requests.get(self.location, stream=True, timeout=self.timeout_s) as resp:
                if resp.status_code != 200:
                    raise BackendUnavailableError(f"model download failed: HTTP {resp.status_code} {resp.reason}")
                chunks = [c for c in resp.iter_content(chunk_size=_STREAM_CHUNK) if c]
        except requests.RequestException as e:
            raise BackendUnavailableError(f"model download failed: {type(e).__name__}: {e}") from e
        return b"".join(chunks)
