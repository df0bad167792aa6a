"""Main FastAPI application for the Image Caption Service.

Accepts an image by URL or base64, captions it with a lazily loaded
image-to-text model and optionally reports simple image statistics.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from src.api.models.caption import HealthResponse, ReadyResponse, WarmupResponse
from src.api.routers import image_captioning
from src.config import HF_HOME_ENV, get_settings
from src.services.errors import ModelLoadError
from src.services.model_loader import get_model_loader

settings = get_settings()

# Set HuggingFace home directory for model caching
if HF_HOME_ENV not in os.environ:
    os.environ[HF_HOME_ENV] = str(settings.cache_dir)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = "GET, POST, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events (startup and shutdown)."""
    warmup_task: asyncio.Task | None = None

    try:
        # Startup
        logger.info("Starting up application...")
        loader = get_model_loader()

        # Warm the model in the background; the server accepts connections meanwhile
        if settings.warmup_on_startup:
            warmup_task = loader.start_background_warmup()
            logger.info(f"Background warmup started for '{loader.primary_model_id}'")
        else:
            logger.info("Startup warmup disabled; model loads on first request")

        logger.info("Startup complete")

        yield  # Application runs here

    finally:
        # Shutdown
        logger.info("Shutting down application...")

        if warmup_task is not None and not warmup_task.done():
            warmup_task.cancel()
            try:
                await warmup_task
            except asyncio.CancelledError:
                pass

        try:
            await get_model_loader().reset()
        except Exception as e:
            logger.warning(f"Error unloading model: {e}")

        logger.info("Shutdown complete")


# Create FastAPI app with lifespan handler
app = FastAPI(
    title="Image Caption Service",
    description="Caption images by URL or base64 with an image-to-text model",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(image_captioning.router)


@app.middleware("http")
async def cors_middleware(request: Request, call_next):
    """Reflect the request origin and answer preflight requests."""
    origin = request.headers.get("origin") or "*"

    if request.method == "OPTIONS":
        response = Response(status_code=204)
    else:
        response = await call_next(request)

    response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
    response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
    if origin != "*":
        response.headers["Vary"] = "Origin"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Render malformed request bodies as a 400 with a single error message."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request body")
        if location:
            message = f"{location}: {message}"
    else:
        message = "Invalid request body"
    logger.warning(f"Rejected request to {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"error": message})


@app.get("/", response_class=PlainTextResponse)
async def root():
    """Plain-text service banner."""
    return "Image caption service is running. POST /caption with image_url or image_base64."


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness check. Never triggers model loading."""
    loader = get_model_loader()
    return HealthResponse(ok=True, model=loader.active_model_id or loader.primary_model_id)


@app.get("/ready", response_model=ReadyResponse)
async def ready() -> ReadyResponse:
    """Readiness check. Never triggers model loading."""
    loader = get_model_loader()
    snapshot = loader.snapshot()
    return ReadyResponse(
        ready=loader.is_ready,
        model=loader.active_model_id,
        status=snapshot["status"],
        last_error=snapshot["last_error"],
    )


@app.get(
    "/warmup",
    response_model=WarmupResponse,
    response_model_exclude_none=True,
    responses={500: {"model": WarmupResponse}},
)
async def warmup():
    """Load the model and block until it is ready or has failed."""
    loader = get_model_loader()
    try:
        model_id = await loader.warmup()
    except ModelLoadError as e:
        return JSONResponse(status_code=500, content={"ready": False, "error": e.message})

    return WarmupResponse(ready=True, model=model_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
