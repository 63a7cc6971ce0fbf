# tbdetect/orchestrators/selector.py
"""
Backend Selector / Fallback Policy

Per request the selector walks an ordered chain of backends:

    NotStarted → TryingBackend(i) → Succeeded
                                  → TryingBackend(i+1)
                                  → AllFailed → conservative fallback result

Each attempt runs on a worker thread and is awaited for at most the backend's
timeout, counted from when a worker starts it. Unavailable backends (network,
timeout, missing model) and faulty backends (invalid output) both advance the
chain; faults are logged at ERROR because they point at a model/data bug
rather than infrastructure.

When every backend fails, the caller still gets an answer: the
FallbackPolicy result, Normal at low trust, flagged degraded.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass

from tbdetect.core.errors import (
    AllBackendsFailedError,
    BackendFaultError,
    BackendUnavailableError,
    DetectionCancelledError,
    classify_backend_error,
)
from tbdetect.schemas.models import (
    CONSERVATIVE_FALLBACK_CONFIDENCE,
    AttemptRecord,
    DetectionResult,
    Label,
)
from tbdetect.tools.backends.provider_base import DetectionRequest, InferenceBackend, run_backend

logger = logging.getLogger(__name__)

_POLL_INTERVAL_S = 0.05


@dataclass(frozen=True)
class FallbackPolicy:
    """
    What to report when no backend produced a trustworthy result.
    Favoring Normal is a patient-safety bias, not an accuracy optimization.
    """

    label: Label = Label.normal
    confidence: int = CONSERVATIVE_FALLBACK_CONFIDENCE

    def result(self) -> DetectionResult:
        return DetectionResult(label=self.label, confidence=self.confidence, degraded=True, backend=None)


CONSERVATIVE_FALLBACK = FallbackPolicy()


@dataclass(frozen=True)
class SelectionOutcome:
    result: DetectionResult
    attempts: tuple[AttemptRecord, ...]

    @property
    def all_failed(self) -> bool:
        return self.result.backend is None


class BackendSelector:
    """Runs the fallback chain with per-attempt timeouts."""

    def __init__(
        self,
        backends: Sequence[InferenceBackend],
        *,
        policy: FallbackPolicy = CONSERVATIVE_FALLBACK,
        default_timeout_s: float | None = 20.0,
        timeouts: dict[str, float] | None = None,
        max_workers: int = 4,
    ) -> None:
        self.backends = list(backends)
        self.policy = policy
        self.default_timeout_s = default_timeout_s
        self._timeouts = dict(timeouts or {})
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tbdetect-backend")

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> BackendSelector:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ---------- public ----------

    def select(self, request: DetectionRequest, *, cancel_event: threading.Event | None = None) -> SelectionOutcome:
        """Try each backend in order; never raises for backend failures."""
        try:
            return self._run_chain(request, cancel_event)
        except AllBackendsFailedError as e:
            logger.warning("%s; returning conservative fallback (%s)", e, self.policy)
            return SelectionOutcome(result=self.policy.result(), attempts=tuple(e.attempts))

    # ---------- internals ----------

    def _run_chain(self, request: DetectionRequest, cancel_event: threading.Event | None) -> SelectionOutcome:
        attempts: list[AttemptRecord] = []
        for backend in self.backends:
            _check_cancelled(cancel_event)
            name = getattr(backend, "name", type(backend).__name__)
            started = time.perf_counter()
            try:
                result = self._attempt(backend, request, cancel_event)
            except TimeoutError as e:
                attempts.append(AttemptRecord(backend=name, outcome="timeout", detail=str(e)))
                logger.warning("[%s] timed out: %s; trying next backend", name, e)
                continue
            except BackendUnavailableError as e:
                attempts.append(AttemptRecord(backend=name, outcome="unavailable", detail=str(e)))
                logger.warning("[%s] unavailable: %s; trying next backend", name, e)
                continue
            except BackendFaultError as e:
                attempts.append(AttemptRecord(backend=name, outcome="fault", detail=str(e)))
                logger.error("[%s] FAULT (model/data bug): %s; trying next backend", name, e)
                continue

            elapsed_ms = (time.perf_counter() - started) * 1000.0
            attempts.append(AttemptRecord(backend=name, outcome="succeeded", detail=f"{elapsed_ms:.1f}ms"))
            logger.info("[%s] %s (%.1fms)", name, result, elapsed_ms)
            return SelectionOutcome(result=result, attempts=tuple(attempts))

        raise AllBackendsFailedError(attempts)

    def _timeout_for(self, name: str) -> float | None:
        return self._timeouts.get(name, self.default_timeout_s)

    def _attempt(
        self,
        backend: InferenceBackend,
        request: DetectionRequest,
        cancel_event: threading.Event | None,
    ) -> DetectionResult:
        name = getattr(backend, "name", type(backend).__name__)
        timeout_s = self._timeout_for(name)
        started_at: list[float] = []

        def _job() -> DetectionResult:
            started_at.append(time.monotonic())
            return run_backend(backend, request)

        future = self._executor.submit(_job)

        # the clock starts once a worker picks the job up; queueing behind busy workers is free
        while True:
            wait_s = _POLL_INTERVAL_S
            if timeout_s is not None and started_at:
                remaining = started_at[0] + timeout_s - time.monotonic()
                if remaining <= 0:
                    # local forward passes are not preemptible; the worker finishes in the background
                    future.cancel()
                    raise TimeoutError(f"no answer within {timeout_s:.1f}s")
                wait_s = min(wait_s, remaining)
            done, _ = concurrent.futures.wait([future], timeout=wait_s)
            if done:
                break
            if cancel_event is not None and cancel_event.is_set():
                future.cancel()
                raise DetectionCancelledError(f"request cancelled while waiting on {name!r}")

        exc = future.exception()
        if exc is None:
            return future.result()
        if isinstance(exc, (BackendUnavailableError, BackendFaultError)):
            raise exc
        raise classify_backend_error(exc) from exc


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise DetectionCancelledError("request cancelled before next backend attempt")
