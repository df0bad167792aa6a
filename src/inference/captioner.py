"""Image-to-text backend built on the transformers ``image-to-text`` pipeline.

The backend is an opaque capability: it takes a decoded RGB image and
returns an ordered list of candidates, each a dict with ``generated_text``.
"""

from __future__ import annotations

import gc
import logging
import time
from typing import Any, Dict, List, Optional

from PIL import Image

from src.config import Settings, get_hf_model_cache_path

logger = logging.getLogger(__name__)


def _resolve_device(device: str) -> int:
    """Map the DEVICE setting to a pipeline device index (-1 is CPU)."""
    if device == "cpu":
        return -1
    if device.startswith("cuda"):
        _, _, index = device.partition(":")
        return int(index) if index.isdigit() else 0

    try:
        import torch

        if torch.cuda.is_available():
            return 0
    except ImportError:
        pass
    return -1


class CaptioningBackend:
    """A loaded captioning model bound to the identifier it was loaded from."""

    def __init__(self, model_id: str, pipe: Any):
        self.model_id = model_id
        self._pipe = pipe

    def infer(self, image: Image.Image, max_new_tokens: int) -> List[Dict[str, Any]]:
        """Generate caption candidates for a single image."""
        if self._pipe is None:
            raise RuntimeError(f"Backend '{self.model_id}' has been closed")

        output = self._pipe(image, max_new_tokens=max_new_tokens)

        # A single image yields a flat list; guard against the batched shape
        if output and isinstance(output[0], list):
            output = output[0]
        return list(output or [])

    def close(self) -> None:
        """Release the pipeline and any GPU memory it holds."""
        if self._pipe is None:
            return

        del self._pipe
        self._pipe = None
        gc.collect()

        try:
            import torch

            if torch.cuda.is_available():
                torch.cuda.empty_cache()
        except ImportError:
            pass


def load_backend(model_id: str, settings: Settings) -> CaptioningBackend:
    """
    Instantiate the image-to-text pipeline for ``model_id``.

    Blocking; the model loader runs it in a worker thread.

    Args:
        model_id: HuggingFace model identifier
        settings: Process settings (token, device, local cache toggle)

    Returns:
        CaptioningBackend wrapping the loaded pipeline

    Raises:
        Any exception raised by transformers while downloading or loading.
    """
    from transformers import pipeline

    start = time.time()
    device = _resolve_device(settings.device)

    model_kwargs: Dict[str, Any] = {}
    local_model_dir = get_hf_model_cache_path(model_id)
    if settings.use_local_models and (local_model_dir / "snapshots").exists():
        logger.info(f"Using locally cached model from {local_model_dir}")
        model_kwargs["local_files_only"] = True
    else:
        logger.info(f"Model not found locally, will download from HuggingFace: {model_id}")

    token: Optional[str] = settings.hf_token or None

    pipe = pipeline(
        "image-to-text",
        model=model_id,
        device=device,
        token=token,
        model_kwargs=model_kwargs,
    )

    load_time_ms = int((time.time() - start) * 1000)
    logger.info(f"Captioning model '{model_id}' loaded in {load_time_ms}ms (device={device})")
    return CaptioningBackend(model_id, pipe)
