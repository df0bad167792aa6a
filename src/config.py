"""Application configuration for the caption service and model cache paths."""

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


DEFAULT_MODEL_ID = "nlpconnect/vit-gpt2-image-captioning"
DEFAULT_FALLBACK_MODEL_ID = "Salesforce/blip-image-captioning-base"
DEFAULT_MAX_NEW_TOKENS = 40

# Environment variable names for HuggingFace cache
HF_HOME_ENV = "HF_HOME"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def get_cache_dir() -> Path:
    """
    Get the directory where model artifacts are cached.

    Checks MODEL_CACHE_DIR first, then HF_HOME, then falls back to
    ./.models-cache relative to the working directory.
    """
    if env_cache_dir := os.getenv("MODEL_CACHE_DIR"):
        return Path(env_cache_dir)

    if hf_home := os.getenv(HF_HOME_ENV):
        return Path(hf_home)

    return Path(".models-cache")


def get_hf_model_cache_path(model_id: str) -> Path:
    """
    Get the HuggingFace cache path for a model following HF conventions.

    Converts model_id to HF cache path: {cache_dir}/hub/models--{model_id with '/' replaced by '--'}

    Args:
        model_id: HuggingFace model identifier (e.g., 'nlpconnect/vit-gpt2-image-captioning')

    Returns:
        Path to model cache directory in HF format

    Examples:
        >>> get_hf_model_cache_path('Salesforce/blip-image-captioning-base')
        Path('.models-cache/hub/models--Salesforce--blip-image-captioning-base')
    """
    safe_model_id = model_id.replace("/", "--")
    return get_cache_dir() / "hub" / f"models--{safe_model_id}"


def get_hf_token() -> str:
    """
    Get the HuggingFace API token used for gated model repositories.

    Returns:
        HuggingFace API token (empty string if not configured)
    """
    return os.getenv("HF_TOKEN", "") or os.getenv("HUGGING_FACE_HUB_TOKEN", "")


@dataclass(frozen=True)
class Settings:
    """Process configuration resolved from the environment."""

    host: str
    port: int
    model_id: str
    fallback_model_id: Optional[str]
    hf_token: str
    cache_dir: Path
    use_local_models: bool
    device: str
    enable_metrics: bool
    warmup_on_startup: bool
    fetch_timeout_seconds: float
    inference_timeout_seconds: float
    max_image_bytes: int
    default_max_new_tokens: int
    metrics_max_side: int
    log_level: str


def load_settings() -> Settings:
    """Build settings from the current environment. Every option has a default."""
    fallback = os.getenv("FALLBACK_MODEL_ID", DEFAULT_FALLBACK_MODEL_ID).strip()

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", 3000),
        model_id=os.getenv("MODEL_ID", DEFAULT_MODEL_ID).strip() or DEFAULT_MODEL_ID,
        fallback_model_id=fallback or None,
        hf_token=get_hf_token(),
        cache_dir=get_cache_dir(),
        use_local_models=_env_bool("USE_LOCAL_MODELS", True),
        device=os.getenv("DEVICE", "auto").strip().lower(),
        enable_metrics=_env_bool("ENABLE_METRICS", True),
        warmup_on_startup=_env_bool("WARMUP_ON_STARTUP", True),
        fetch_timeout_seconds=_env_float("FETCH_TIMEOUT_SECONDS", 15.0),
        inference_timeout_seconds=_env_float("INFERENCE_TIMEOUT_SECONDS", 120.0),
        max_image_bytes=_env_int("MAX_IMAGE_BYTES", 20 * 1024 * 1024),
        default_max_new_tokens=_env_int("DEFAULT_MAX_NEW_TOKENS", DEFAULT_MAX_NEW_TOKENS),
        metrics_max_side=_env_int("METRICS_MAX_SIDE", 512),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings (resolved once)."""
    return load_settings()
