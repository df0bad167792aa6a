"""Exception hierarchy for the caption service.

Each error carries the HTTP status code it maps to at the request boundary,
where it is rendered as ``{"error": message}``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CaptionServiceError(Exception):
    """Base exception for all caption service errors."""

    default_message: str = "An unexpected error occurred"
    default_status_code: int = 500

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None):
        self.message = message or self.default_message
        self.status_code = status_code or self.default_status_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class InputError(CaptionServiceError):
    """Missing or malformed image reference in the request body."""

    default_message = "Missing image_url or image_base64"
    default_status_code = 400


class AcquisitionError(CaptionServiceError):
    """Image could not be fetched or decoded."""

    default_message = "Failed to acquire image"

    def __init__(self, message: Optional[str] = None, *, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class ModelLoadError(CaptionServiceError):
    """Neither the primary nor the fallback backend could be loaded."""

    default_message = "Model could not be loaded"

    def __init__(self, message: Optional[str] = None, *, attempts: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.attempts = attempts or {}


class InferenceError(CaptionServiceError):
    """The backend failed on an acquired image with a ready model."""

    default_message = "Caption generation failed"


class InferenceTimeoutError(InferenceError):
    default_message = "Caption generation timed out"
