"""
FastAPI Dependencies for the Restoration Service

Provides dependency injection for:
- ImageProcessor (singleton, owns the loaded model)
- Model library paths (uploaded/imported .onnx files)
"""

from pathlib import Path

from fastapi import HTTPException

from src.core.config import settings
from src.pipeline.processor import ImageProcessor


# =============================================================================
# Global Singletons - one processor (and one loaded model) per process
# =============================================================================

_processor = ImageProcessor()


def get_processor() -> ImageProcessor:
    """Returns the singleton image processor."""
    return _processor


# =============================================================================
# Model Library
# =============================================================================

def safe_model_filename(filename: str) -> str:
    """
    Reduce a client-supplied model file name to a bare, allowed file name.

    Raises:
        HTTPException: 400 for empty names or disallowed extensions
    """
    name = Path(filename or "").name
    if not name or name in (".", ".."):
        raise HTTPException(status_code=400, detail="A model file name is required")

    if Path(name).suffix.lower() not in settings.allowed_model_extensions:
        allowed = ", ".join(sorted(settings.allowed_model_extensions))
        raise HTTPException(status_code=400, detail=f"Model files must have one of: {allowed}")

    return name


def model_library_path(filename: str) -> Path:
    """Absolute path of a model file inside the model library folder."""
    return Path(settings.MODELS_DIR) / safe_model_filename(filename)
