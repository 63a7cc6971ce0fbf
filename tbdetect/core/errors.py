# tbdetect/core/errors.py
"""
Typed errors + utilities for the detection core.

Exports
-------
- TBDetectionError (base)
- Input errors:   DecodeError, TruncatedDataError, PayloadTooLargeError
- Backend errors: BackendError, BackendUnavailableError, BackendFaultError, MalformedOutputError
- Chain errors:   AllBackendsFailedError, DetectionCancelledError
- ConfigurationError
- INPUT_ERRORS, BACKEND_ERRORS
- classify_backend_error(exc)
- backend_error_guard()

Input errors are surfaced to the caller (HTTP 400 equivalent). Backend errors
are recovered by the selector through fallback and never reach the caller.
"""

from __future__ import annotations

import concurrent.futures
import json
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tbdetect.schemas.models import AttemptRecord

# =========================
# Exception types
# =========================


class TBDetectionError(RuntimeError):
    """Base class for all detection-core failures."""


class DecodeError(TBDetectionError):
    """Payload is empty or its magic bytes do not match a supported image format."""


class TruncatedDataError(DecodeError):
    """Fewer bytes are available than the detected image format requires."""


class PayloadTooLargeError(TBDetectionError):
    """Upload exceeds the configured maximum size; rejected before decode."""


class BackendError(TBDetectionError):
    """Base class for inference backend failures."""


class BackendUnavailableError(BackendError):
    """Backend could not run (network, timeout, missing model/SDK). Try the next one."""


class BackendFaultError(BackendError):
    """Backend ran but produced invalid output. Indicates a model/data bug."""


class MalformedOutputError(BackendFaultError):
    """Score vector violates the output contract (length not in {1, 2}, NaN, out of range)."""


class AllBackendsFailedError(TBDetectionError):
    """Every backend in the chain failed; carries the attempt log."""

    def __init__(self, attempts: Sequence[AttemptRecord]) -> None:
        self.attempts = list(attempts)
        names = ", ".join(f"{a.backend}={a.outcome}" for a in self.attempts) or "no backends"
        super().__init__(f"all backends failed ({names})")


class DetectionCancelledError(TBDetectionError):
    """Caller abandoned the request; raised at the next suspension point."""


class ConfigurationError(ValueError):
    """Detector settings are invalid or incomplete."""


# Selector tuples for grouped exception handling
INPUT_ERRORS = (DecodeError, TruncatedDataError, PayloadTooLargeError)
BACKEND_ERRORS = (BackendUnavailableError, BackendFaultError, MalformedOutputError)


# =========================
# Classification helpers
# =========================


def classify_backend_error(exc: BaseException) -> BackendError:
    """
    Map arbitrary exceptions escaping a backend to a typed BackendError.

    Heuristics:
      - BackendError subclasses → passed through
      - timeouts (builtin, futures) → BackendUnavailableError
      - requests transport errors → BackendUnavailableError
      - openai connection / timeout / rate-limit / 5xx → BackendUnavailableError
      - openai authentication / permission → BackendUnavailableError (config, not data)
      - ImportError / OSError / ConnectionError → BackendUnavailableError
      - JSON / value / type / key / index errors → BackendFaultError
      - Fallback → BackendFaultError
    """
    if isinstance(exc, BackendError):
        return exc

    msg = f"{type(exc).__name__}: {exc}"

    if isinstance(exc, (TimeoutError, concurrent.futures.TimeoutError)):
        return BackendUnavailableError(msg)

    try:
        import requests

        if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
            return BackendUnavailableError(msg)
        if isinstance(exc, requests.HTTPError):
            status = getattr(getattr(exc, "response", None), "status_code", None)
            if status is None or status in (408, 429) or status >= 500:
                return BackendUnavailableError(msg)
            return BackendFaultError(msg)
        if isinstance(exc, requests.RequestException):
            return BackendUnavailableError(msg)
    except ImportError:  # pragma: no cover
        pass

    try:
        import openai

        if isinstance(
            exc,
            (
                openai.APITimeoutError,
                openai.APIConnectionError,
                openai.RateLimitError,
                openai.InternalServerError,
                openai.AuthenticationError,
                openai.PermissionDeniedError,
            ),
        ):
            return BackendUnavailableError(msg)
        if isinstance(exc, openai.APIStatusError):
            return BackendFaultError(msg)
    except ImportError:  # pragma: no cover
        pass

    if isinstance(exc, (ImportError, ConnectionError, OSError)):
        return BackendUnavailableError(msg)

    if isinstance(exc, (json.JSONDecodeError, ValueError, TypeError, KeyError, IndexError)):
        return BackendFaultError(msg)

    return BackendFaultError(msg)


@contextmanager
def backend_error_guard() -> Iterator[None]:
    """Context manager to normalize unexpected exceptions from backend internals."""
    try:
        yield
    except BACKEND_ERRORS:
        raise
    except Exception as exc:  # noqa: BLE001
        raise classify_backend_error(exc) from exc


__all__ = [
    "TBDetectionError",
    "DecodeError",
    "TruncatedDataError",
    "PayloadTooLargeError",
    "BackendError",
    "BackendUnavailableError",
    "BackendFaultError",
    "MalformedOutputError",
    "AllBackendsFailedError",
    "DetectionCancelledError",
    "ConfigurationError",
    "INPUT_ERRORS",
    "BACKEND_ERRORS",
    "classify_backend_error",
    "backend_error_guard",
]
