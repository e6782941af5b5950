"""
Global Exception Handling

Exception taxonomy for the restoration pipeline and the FastAPI handlers
that turn it into structured error responses.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.core.logging import get_logger, request_id_var

logger = get_logger(__name__)


# Pipeline stages an ImageProcessingError can be raised from
STAGE_INIT = "init"
STAGE_CHUNKING = "chunking"
STAGE_INFERENCE = "inference"
STAGE_COMPOSITING = "compositing"

PROCESSING_STAGES = (STAGE_INIT, STAGE_CHUNKING, STAGE_INFERENCE, STAGE_COMPOSITING)


# =============================================================================
# Custom Exceptions
# =============================================================================

class DejpegBaseException(Exception):
    """Base exception for the restoration service."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        request_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.request_id = request_id or request_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class ModelLoadError(DejpegBaseException):
    """Raised when a model file is missing or rejected by the inference engine."""

    def __init__(self, message: str, model_path: str, **kwargs):
        super().__init__(message, code=400, **kwargs)
        self.model_path = str(model_path)
        self.details["model_path"] = self.model_path


class ImageProcessingError(DejpegBaseException):
    """Raised when a processing request fails in one of its stages."""

    def __init__(self, message: str, stage: str, code: int = 500, **kwargs):
        if stage not in PROCESSING_STAGES:
            raise ValueError(f"unknown processing stage: {stage}")
        super().__init__(message, code=code, stage=stage, **kwargs)


class NoModelLoadedError(ImageProcessingError):
    """Raised when processing is requested before a model is loaded."""

    def __init__(self, message: str = "No model loaded. Please load a model first.", **kwargs):
        super().__init__(message, stage=STAGE_INIT, code=400, **kwargs)


class ProcessorBusyError(ImageProcessingError):
    """Raised when a second request hits a processor that is already working."""

    def __init__(self, message: str = "Another image is currently being processed", **kwargs):
        super().__init__(message, stage=STAGE_INIT, code=409, **kwargs)


class InvalidImageError(ImageProcessingError):
    """Raised when the request payload cannot be processed at all."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, stage=STAGE_INIT, code=400, **kwargs)


class InferenceEngineError(ImageProcessingError):
    """Raised when the inference engine call itself fails."""

    def __init__(self, message: str, engine_error: Optional[str] = None, **kwargs):
        super().__init__(message, stage=STAGE_INFERENCE, code=500, **kwargs)
        self.details["engine_error"] = engine_error if engine_error is not None else message


class TileStorageError(DejpegBaseException):
    """Raised when staging a tile buffer fails."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


# =============================================================================
# Exception Handlers
# =============================================================================

def _error_body(exc: DejpegBaseException, request_id: Optional[str]) -> Dict[str, Any]:
    return {
        "error": exc.message,
        "request_id": exc.request_id or request_id,
        "code": exc.code,
        "stage": exc.stage,
        "details": exc.details,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    }


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(DejpegBaseException)
    async def dejpeg_exception_handler(request: Request, exc: DejpegBaseException):
        logger.error(
            "dejpeg_exception",
            error=exc.message,
            error_type=type(exc).__name__,
            code=exc.code,
            stage=exc.stage,
            details=exc.details
        )

        return JSONResponse(
            status_code=exc.code,
            content=_error_body(exc, request_id_var.get())
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "request_id": request_id_var.get(),
                "code": 500,
                "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            }
        )
