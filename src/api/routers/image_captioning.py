"""Image captioning API router for generating image descriptions."""

import logging
import uuid

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..models.caption import CaptionRequest, CaptionResponse, ErrorResponse, ImageMetricsResponse
from ...services.caption_service import get_caption_service
from ...services.errors import CaptionServiceError, InputError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["image-captioning"])


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post(
    "/caption",
    response_model=CaptionResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def caption_image(request: CaptionRequest):
    """
    Generate a caption for an image.

    Accepts either ``image_url`` or ``image_base64`` (raw base64 or data URI).

    Args:
        request: Caption request parameters

    Returns:
        Generated caption, the model that served it, latency and optional metrics
    """
    request_id = str(uuid.uuid4())
    service = get_caption_service()

    try:
        result = await service.caption(request.image_reference, request.max_new_tokens)
    except InputError as e:
        logger.warning(f"Invalid caption request {request_id}: {e.message}")
        return error_response(e.status_code, e.message)
    except CaptionServiceError as e:
        logger.error(f"Caption failed for request {request_id}: {e.message}")
        return error_response(e.status_code, e.message)
    except Exception as e:
        logger.error(f"Caption failed for request {request_id}: {e}", exc_info=True)
        return error_response(500, str(e) or "Internal server error")

    metrics = None
    if result.metrics is not None:
        metrics = ImageMetricsResponse(
            brightness=result.metrics.brightness,
            contrast=result.metrics.contrast,
            saturation=result.metrics.saturation,
            dominant_color=result.metrics.dominant_color,
            edge_density=result.metrics.edge_density,
            text_ratio=result.metrics.text_ratio,
        )

    logger.info(
        f"Caption request {request_id} served by '{result.model}' in {result.latency_ms}ms"
    )
    return CaptionResponse(
        caption=result.caption,
        model=result.model,
        latency_ms=result.latency_ms,
        metrics=metrics,
    )
