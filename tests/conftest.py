"""Shared fixtures for caption service tests.

Backends are faked so no model is downloaded; images are generated in memory.
"""

from __future__ import annotations

import base64
import io
import os
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

# Keep startup quiet and deterministic before any app module reads settings
os.environ.setdefault("WARMUP_ON_STARTUP", "0")
os.environ.setdefault("ENABLE_METRICS", "1")

import pytest
from PIL import Image

from src.services import model_loader as model_loader_module

PRIMARY_MODEL = "test/primary-captioner"
FALLBACK_MODEL = "test/fallback-captioner"


# =============================================================================
# Fakes
# =============================================================================


class FakeBackend:
    """Stands in for a loaded image-to-text pipeline."""

    def __init__(
        self,
        model_id: str,
        captions: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.model_id = model_id
        self.captions = ["a red square"] if captions is None else captions
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def infer(self, image: Image.Image, max_new_tokens: int) -> List[Dict[str, Any]]:
        self.calls.append({"size": image.size, "max_new_tokens": max_new_tokens})
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [{"generated_text": caption} for caption in self.captions]

    def close(self) -> None:
        self.closed = True


class RecordingLoader:
    """Blocking loader_fn that records every identifier it is asked to load."""

    def __init__(
        self,
        failing: Iterable[str] = (),
        delay: float = 0.0,
        backend_kwargs: Optional[Dict[str, Any]] = None,
    ):
        self.failing = set(failing)
        self.delay = delay
        self.backend_kwargs = backend_kwargs or {}
        self.calls: List[str] = []
        self.backends: List[FakeBackend] = []
        self._lock = threading.Lock()

    def __call__(self, model_id: str) -> FakeBackend:
        with self._lock:
            self.calls.append(model_id)
        if self.delay:
            time.sleep(self.delay)
        if model_id in self.failing:
            raise RuntimeError(f"cannot load {model_id}")
        backend = FakeBackend(model_id, **self.backend_kwargs)
        self.backends.append(backend)
        return backend


# =============================================================================
# Image helpers
# =============================================================================


def make_png(color: Tuple[int, int, int] = (255, 0, 0), size: Tuple[int, int] = (10, 10)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def to_data_uri(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def split_image(size: Tuple[int, int] = (10, 10)) -> Image.Image:
    """Left half black, right half white."""
    image = Image.new("RGB", size, (0, 0, 0))
    image.paste((255, 255, 255), (size[0] // 2, 0, size[0], size[1]))
    return image


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_global_loader(monkeypatch: pytest.MonkeyPatch) -> None:
    """Each test starts without a process-wide loader."""
    monkeypatch.setattr(model_loader_module, "_loader", None)


@pytest.fixture
def red_png() -> bytes:
    return make_png((255, 0, 0))


@pytest.fixture
def red_data_uri(red_png: bytes) -> str:
    return to_data_uri(red_png)


@pytest.fixture
def recording_loader() -> RecordingLoader:
    return RecordingLoader()
