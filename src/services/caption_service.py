"""Per-request caption orchestration.

Resolves the image, ensures the model is ready and (optionally) computes
image metrics concurrently, then runs inference and assembles the result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from src.config import DEFAULT_MAX_NEW_TOKENS, Settings, get_settings

from .errors import CaptionServiceError, InferenceError, InferenceTimeoutError, InputError
from .image_metrics import ImageMetrics, compute_metrics_async
from .image_source import ImagePayload, acquire_image
from .model_loader import LoadedModel, ModelLoader, get_model_loader

logger = logging.getLogger(__name__)


@dataclass
class CaptionResult:
    """Outcome of one captioning request."""

    caption: str
    model: str
    latency_ms: int  # Inference step only
    metrics: Optional[ImageMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "caption": self.caption,
            "model": self.model,
            "latency_ms": self.latency_ms,
        }
        if self.metrics is not None:
            result["metrics"] = self.metrics.to_dict()
        return result


def normalize_max_new_tokens(value: Any, default: int = DEFAULT_MAX_NEW_TOKENS) -> int:
    """Coerce a requested token bound to a positive int, else use the default."""
    if isinstance(value, bool) or value is None:
        return default
    try:
        tokens = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return tokens if tokens > 0 else default


def first_caption(candidates: Any) -> str:
    """Extract the first candidate's generated text, or '' if there is none."""
    if not candidates:
        return ""

    first = candidates[0] if isinstance(candidates, (list, tuple)) else candidates
    if isinstance(first, dict):
        text = first.get("generated_text")
    else:
        text = getattr(first, "generated_text", None)
    return str(text) if text is not None else ""


class CaptionService:
    """Coordinates image acquisition, model readiness, metrics and inference."""

    def __init__(
        self,
        loader: ModelLoader,
        enable_metrics: bool = True,
        fetch_timeout: float = 15.0,
        inference_timeout: float = 120.0,
        max_image_bytes: int = 20 * 1024 * 1024,
        default_max_new_tokens: int = DEFAULT_MAX_NEW_TOKENS,
        metrics_max_side: Optional[int] = 512,
    ):
        self._loader = loader
        self.enable_metrics = enable_metrics
        self.fetch_timeout = fetch_timeout
        self.inference_timeout = inference_timeout
        self.max_image_bytes = max_image_bytes
        self.default_max_new_tokens = default_max_new_tokens
        self.metrics_max_side = metrics_max_side

    @classmethod
    def from_settings(cls, loader: ModelLoader, settings: Settings) -> "CaptionService":
        return cls(
            loader,
            enable_metrics=settings.enable_metrics,
            fetch_timeout=settings.fetch_timeout_seconds,
            inference_timeout=settings.inference_timeout_seconds,
            max_image_bytes=settings.max_image_bytes,
            default_max_new_tokens=settings.default_max_new_tokens,
            metrics_max_side=settings.metrics_max_side,
        )

    async def caption(
        self,
        image_reference: Optional[str],
        max_new_tokens: Any = None,
    ) -> CaptionResult:
        """
        Generate a caption for one image reference.

        Args:
            image_reference: http(s) URL, data-URI or bare base64 string
            max_new_tokens: Requested caption length bound (defaults when invalid)

        Returns:
            CaptionResult naming the model that actually served the request

        Raises:
            InputError: If no image reference was given
            AcquisitionError: If the image could not be fetched or decoded
            ModelLoadError: If neither primary nor fallback model loaded
            InferenceError: If the backend failed or timed out
        """
        if not image_reference or not isinstance(image_reference, str) or not image_reference.strip():
            raise InputError("Missing image_url or image_base64")

        tokens = normalize_max_new_tokens(max_new_tokens, self.default_max_new_tokens)

        image_task = asyncio.ensure_future(
            acquire_image(image_reference, timeout=self.fetch_timeout, max_bytes=self.max_image_bytes)
        )
        model_task = asyncio.ensure_future(self._loader.acquire())
        tasks: List[asyncio.Future] = [image_task, model_task]
        if self.enable_metrics:
            tasks.append(asyncio.ensure_future(self._metrics_for(image_task)))

        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        payload: ImagePayload = results[0]
        loaded: LoadedModel = results[1]
        metrics: Optional[ImageMetrics] = results[2] if self.enable_metrics else None

        caption, latency_ms = await self._infer(loaded, payload, tokens)

        return CaptionResult(
            caption=caption,
            model=loaded.model_id,
            latency_ms=latency_ms,
            metrics=metrics,
        )

    async def _metrics_for(self, image_task: asyncio.Future) -> ImageMetrics:
        payload: ImagePayload = await image_task
        try:
            return await compute_metrics_async(payload.image, self.metrics_max_side)
        except Exception as e:
            raise CaptionServiceError(f"Failed to compute image metrics: {e}") from e

    async def _infer(self, loaded: LoadedModel, payload: ImagePayload, max_new_tokens: int):
        start = time.perf_counter()
        try:
            candidates = await asyncio.wait_for(
                asyncio.to_thread(loaded.backend.infer, payload.image, max_new_tokens),
                timeout=self.inference_timeout,
            )
        except asyncio.TimeoutError as e:
            raise InferenceTimeoutError(
                f"Caption generation timed out after {self.inference_timeout}s"
            ) from e
        except CaptionServiceError:
            raise
        except Exception as e:
            logger.error(f"Inference failed on model '{loaded.model_id}': {e}")
            raise InferenceError(str(e) or InferenceError.default_message) from e

        latency_ms = max(0, int((time.perf_counter() - start) * 1000))
        return first_caption(candidates), latency_ms


def get_caption_service() -> CaptionService:
    """Build the caption service around the global model loader."""
    return CaptionService.from_settings(get_model_loader(), get_settings())
