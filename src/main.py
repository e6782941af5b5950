"""
DeJPEG Restoration Service - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Tiled ONNX restoration of arbitrarily large images
"""

import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from src.core.config import settings, ensure_directories
from src.core.logging import setup_logging, get_logger
from src.core.exceptions import register_exception_handlers
from src.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from src.api.v1 import api_v1_router
from src.api.dependencies import get_processor
from src.pipeline.processor import ImageProcessor


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    startup_start = time.time()

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    ensure_directories()
    logger.info(
        "directories_ready",
        models_dir=str(settings.MODELS_DIR),
        temp_dir=str(settings.TEMP_DIR)
    )

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    startup_time = time.time() - startup_start
    logger.info("application_ready", startup_time_seconds=startup_time)

    yield

    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Removes JPEG artifacts and noise with ONNX restoration models.

    - **Model library**: upload `.onnx` models, or load previously imported ones
    - **Tiled inference**: large images are cut into overlapping tiles
    - **Seamless output**: tiles are blended back with feathered edges
    - **Progress**: optional Server-Sent-Events stream per processed tile
    - **Observability**: structured logging, Prometheus metrics

    All endpoints are versioned under `/api/v1/`.
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

# CORS
cors_origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).inc()

    response.headers["X-Process-Time"] = str(duration)

    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
app.include_router(api_v1_router)


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health(processor: ImageProcessor = Depends(get_processor)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "model_loaded": processor.is_model_loaded,
        "model_name": processor.model_name,
        "processing": processor.is_processing(),
        "processing_state": processor.get_processing_state().model_dump()
    }


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
