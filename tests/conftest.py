# tests/conftest.py
from __future__ import annotations

import logging
import os
import random

import pytest

from tbdetect.core.logs import PACKAGE_LOGGER
from tbdetect.schemas.models import ImageBuffer
from tests.utils import (
    jpeg_bytes as _make_jpeg,
    make_request as _make_request,
    png_bytes as _make_png,
)


# -------- Global deterministic seed --------
@pytest.fixture(autouse=True, scope="session")
def _seed_session():
    random.seed(1337)
    os.environ.setdefault("PYTHONHASHSEED", "0")
    yield


# -------- Hermetic env: no real keys, no ambient TBDETECT_* settings --------
@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("TBDETECT_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    yield


# -------- Image fixtures --------
@pytest.fixture
def png_bytes():
    """
    Fixture that returns a callable to generate PNG bytes with low compression.
    Usage:
        data = png_bytes(64, 64, mode="L")
    """
    return _make_png


@pytest.fixture
def jpeg_bytes():
    return _make_jpeg


@pytest.fixture
def xray_image() -> ImageBuffer:
    """Square grayscale PNG, the common upload shape."""
    return ImageBuffer(data=_make_png(256, 256, mode="L", color=90), mime_type="image/png")


@pytest.fixture
def request_factory():
    """
    Callable factory for DetectionRequest objects.
    Usage:
        req = request_factory()                      # default gray PNG, imagenet
        req = request_factory(data, policy="unit")
    """

    def _factory(data: bytes | None = None, *, policy: str = "imagenet"):
        return _make_request(data, policy=policy)

    return _factory


# -------- Package logger (handlers installed by configure_logging are removed) --------
@pytest.fixture
def pkg_logger():
    logger = logging.getLogger(PACKAGE_LOGGER)
    before = list(logger.handlers)
    level = logger.level
    yield logger
    for h in list(logger.handlers):
        if h not in before:
            logger.removeHandler(h)
            h.close()
    logger.setLevel(level)


# -------- Pytest markers --------
def pytest_configure(config):
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks integration tests")
