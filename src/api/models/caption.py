"""Pydantic models for image caption API endpoints."""

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class CaptionRequest(BaseModel):
    """Request model for image captioning."""

    image_url: Optional[str] = Field(default=None, description="Absolute http(s) image URL")
    image_base64: Optional[str] = Field(
        default=None, description="Base64-encoded image, optionally as a data URI"
    )
    max_new_tokens: Optional[Any] = Field(
        default=None,
        description="Upper bound on generated caption length (defaults to 40 when absent or not numeric)",
    )

    @property
    def image_reference(self) -> Optional[str]:
        """The URL when given, otherwise the base64 payload."""
        if self.image_url and self.image_url.strip():
            return self.image_url
        if self.image_base64 and self.image_base64.strip():
            return self.image_base64
        return None


class ImageMetricsResponse(BaseModel):
    """Image statistics, normalized to [0, 1] except the dominant color."""

    brightness: float
    contrast: float
    saturation: float
    dominant_color: List[int] = Field(..., serialization_alias="dominantColor")
    edge_density: float = Field(..., serialization_alias="edgeDensity")
    text_ratio: float = Field(0.0, serialization_alias="textRatio", description="Not computed; always 0.0")


class CaptionResponse(BaseModel):
    """Response model for caption results."""

    caption: str = Field(..., description="Generated caption")
    model: str = Field(..., description="Model that actually served the request")
    latency_ms: int = Field(..., description="Inference duration in milliseconds")
    metrics: Optional[ImageMetricsResponse] = Field(default=None, description="Image statistics")


class HealthResponse(BaseModel):
    ok: bool = True
    model: str


class ReadyResponse(BaseModel):
    ready: bool
    model: Optional[str] = None
    status: str
    last_error: Optional[str] = None


class WarmupResponse(BaseModel):
    ready: bool
    model: Optional[str] = None
    error: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
