"""
Captioning Model Loader

Owns the lazy, process-wide acquisition of the captioning backend.

Key Features:
- Lazy load: nothing is loaded until the first acquire() or warmup
- Single flight: concurrent callers share one in-flight load
- Fallback: a failed primary load degrades to the fallback identifier
- Reset on total failure: a later caller starts over from the primary
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, NamedTuple, Optional

from .errors import ModelLoadError

logger = logging.getLogger(__name__)


class ModelStatus(str, Enum):
    """Loader lifecycle states."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class LoadOutcome:
    """Result of a single load attempt for one identifier."""

    model_id: str
    backend: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.backend is not None


class LoadedModel(NamedTuple):
    """A ready backend together with the identifier that produced it."""

    model_id: str
    backend: Any


class ModelLoader:
    """
    Loads the captioning backend at most once per process.

    The decision "is a load already in flight" and the registration of the
    new in-flight task happen without an intervening await, so two requests
    interleaved on the event loop can never start two load sequences.
    """

    def __init__(
        self,
        primary_model_id: str,
        fallback_model_id: Optional[str] = None,
        loader_fn: Optional[Callable[[str], Any]] = None,
        unloader_fn: Optional[Callable[[Any], None]] = None,
    ):
        """
        Initialize the loader.

        Args:
            primary_model_id: Identifier tried first
            fallback_model_id: Identifier tried when the primary fails (None = no fallback)
            loader_fn: Blocking function that loads and returns a backend for an identifier
            unloader_fn: Optional blocking function that releases a backend
        """
        if loader_fn is None:
            raise ValueError("loader_fn is required")

        self.primary_model_id = primary_model_id
        self.fallback_model_id = fallback_model_id
        self._loader_fn = loader_fn
        self._unloader_fn = unloader_fn

        self._status = ModelStatus.UNLOADED
        self._loaded: Optional[LoadedModel] = None
        self._pending: Optional[asyncio.Task] = None
        self._warmup_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()  # Serializes reset() calls
        self._last_error: Optional[str] = None
        self._load_time_ms: Optional[int] = None
        self._attempt_sequences = 0

        logger.info(
            f"ModelLoader initialized: primary={primary_model_id}, "
            f"fallback={fallback_model_id}"
        )

    # ------------------------------------------------------------------
    # Passive queries (never trigger a load)
    # ------------------------------------------------------------------

    @property
    def status(self) -> ModelStatus:
        return self._status

    @property
    def active_model_id(self) -> Optional[str]:
        return self._loaded.model_id if self._loaded else None

    @property
    def is_ready(self) -> bool:
        return self._status is ModelStatus.READY and self._loaded is not None

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def attempt_sequences(self) -> int:
        """Number of primary-first load sequences started so far."""
        return self._attempt_sequences

    def snapshot(self) -> Dict[str, Any]:
        """Current loader state for readiness reporting."""
        return {
            "status": self._status.value,
            "model": self.active_model_id,
            "primary_model": self.primary_model_id,
            "fallback_model": self.fallback_model_id,
            "last_error": self._last_error,
            "load_time_ms": self._load_time_ms,
        }

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def acquire(self) -> LoadedModel:
        """
        Get the ready backend, loading it if necessary.

        All callers issued while a load is in flight await the same task and
        observe the same outcome.

        Returns:
            LoadedModel with the identifier that was actually loaded

        Raises:
            ModelLoadError: If both the primary and fallback loads failed
        """
        if self._loaded is not None and self._status is ModelStatus.READY:
            return self._loaded

        task = self._pending
        if task is None:
            task = asyncio.create_task(self._load_sequence())
            task.add_done_callback(self._consume_task_result)
            self._pending = task
            self._status = ModelStatus.LOADING
            self._attempt_sequences += 1

        # Shielded so a cancelled request does not cancel the shared load
        return await asyncio.shield(task)

    async def warmup(self) -> str:
        """
        Trigger loading and block until it settles.

        Returns:
            The active model identifier

        Raises:
            ModelLoadError: If loading failed
        """
        loaded = await self.acquire()
        return loaded.model_id

    def start_background_warmup(self) -> asyncio.Task:
        """Start loading without blocking the caller. Failures are only logged."""
        if self._warmup_task is not None and not self._warmup_task.done():
            return self._warmup_task

        async def _warmup() -> None:
            try:
                model_id = await self.warmup()
                logger.info(f"Background warmup complete: '{model_id}' ready")
            except ModelLoadError as e:
                logger.error(f"Background warmup failed: {e}")

        self._warmup_task = asyncio.create_task(_warmup())
        return self._warmup_task

    async def reset(self) -> bool:
        """
        Unload the backend and return to the unloaded state.

        Waits for an in-flight load to settle first.

        Returns:
            True if a loaded backend was released, False otherwise
        """
        async with self._lock:
            pending = self._pending
            if pending is not None:
                try:
                    await asyncio.shield(pending)
                except ModelLoadError:
                    pass

            loaded = self._loaded
            self._clear_state()
            if loaded is None:
                logger.debug("No model loaded, nothing to reset")
                return False

            logger.info(f"Unloading model '{loaded.model_id}'")
            if self._unloader_fn is not None:
                try:
                    await asyncio.to_thread(self._unloader_fn, loaded.backend)
                except Exception as e:
                    logger.error(f"Error unloading '{loaded.model_id}': {e}")
            return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _try_load(self, model_id: str) -> LoadOutcome:
        """Attempt to load a single identifier; never raises."""
        logger.info(f"Loading captioning model '{model_id}'")
        try:
            backend = await asyncio.to_thread(self._loader_fn, model_id)
        except Exception as e:
            logger.error(f"Failed to load model '{model_id}': {e}")
            return LoadOutcome(model_id=model_id, error=e)

        if backend is None:
            return LoadOutcome(
                model_id=model_id,
                error=RuntimeError(f"Loader returned no backend for '{model_id}'"),
            )
        return LoadOutcome(model_id=model_id, backend=backend)

    def _fallback_candidate(self) -> Optional[str]:
        fallback = self.fallback_model_id
        if not fallback or fallback == self.primary_model_id:
            return None
        return fallback

    async def _load_sequence(self) -> LoadedModel:
        start = time.time()
        attempts: Dict[str, str] = {}

        outcome = await self._try_load(self.primary_model_id)
        if not outcome.ok:
            attempts[outcome.model_id] = str(outcome.error)
            fallback = self._fallback_candidate()
            if fallback is not None:
                logger.warning(
                    f"Primary model '{self.primary_model_id}' failed, "
                    f"falling back to '{fallback}'"
                )
                outcome = await self._try_load(fallback)
                if not outcome.ok:
                    attempts[outcome.model_id] = str(outcome.error)

        if outcome.ok:
            loaded = LoadedModel(model_id=outcome.model_id, backend=outcome.backend)
            self._loaded = loaded
            self._status = ModelStatus.READY
            self._pending = None
            self._last_error = None
            self._load_time_ms = int((time.time() - start) * 1000)
            logger.info(
                f"Model '{loaded.model_id}' ready after {self._load_time_ms}ms"
            )
            return loaded

        message = f"Failed to load model '{outcome.model_id}': {outcome.error}"
        self._status = ModelStatus.FAILED
        self._last_error = message
        logger.error(f"{message}. Resetting loader so a later request can retry.")
        self._clear_state()
        raise ModelLoadError(message, attempts=attempts) from outcome.error

    def _clear_state(self) -> None:
        self._pending = None
        self._loaded = None
        self._load_time_ms = None
        self._status = ModelStatus.UNLOADED

    @staticmethod
    def _consume_task_result(task: asyncio.Task) -> None:
        # Marks the exception as retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()


# Global singleton instance
_loader: Optional[ModelLoader] = None


def _close_backend(backend: Any) -> None:
    close = getattr(backend, "close", None)
    if callable(close):
        close()


def get_model_loader() -> ModelLoader:
    """Get the global model loader, building it from settings on first use."""
    global _loader
    if _loader is None:
        from src.config import get_settings
        from src.inference.captioner import load_backend

        settings = get_settings()
        _loader = ModelLoader(
            primary_model_id=settings.model_id,
            fallback_model_id=settings.fallback_model_id,
            loader_fn=functools.partial(load_backend, settings=settings),
            unloader_fn=_close_backend,
        )
    return _loader


def init_model_loader(
    primary_model_id: str,
    fallback_model_id: Optional[str],
    loader_fn: Callable[[str], Any],
    unloader_fn: Optional[Callable[[Any], None]] = _close_backend,
) -> ModelLoader:
    """
    Replace the global model loader with custom settings.

    Args:
        primary_model_id: Identifier tried first
        fallback_model_id: Identifier tried when the primary fails
        loader_fn: Blocking function that loads and returns a backend
        unloader_fn: Optional blocking function that releases a backend

    Returns:
        The initialized loader
    """
    global _loader
    _loader = ModelLoader(
        primary_model_id=primary_model_id,
        fallback_model_id=fallback_model_id,
        loader_fn=loader_fn,
        unloader_fn=unloader_fn,
    )
    return _loader
