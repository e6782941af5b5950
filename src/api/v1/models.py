"""
Model Library Endpoints

POST   /api/v1/models/load        - Upload a model, or load an imported one by name
GET    /api/v1/models             - List imported models
DELETE /api/v1/models/{filename}  - Delete an imported model (unloads it if active)
"""

import asyncio
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, ConfigDict

from src.api.dependencies import get_processor, model_library_path, safe_model_filename
from src.core.config import settings
from src.core.logging import get_logger
from src.engines.restoration.schemas import ModelInfo
from src.pipeline.processor import ImageProcessor

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Response Schemas
# =============================================================================

class ModelLoadResponse(BaseModel):
    """Result of loading a model."""
    model_config = ConfigDict(protected_namespaces=())

    success: bool
    model: str
    message: str
    model_info: ModelInfo


class ModelListResponse(BaseModel):
    models: List[str]


class ModelDeleteResponse(BaseModel):
    success: bool
    message: str
    unloaded: bool = False


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/load", response_model=ModelLoadResponse)
async def load_model(
    file: Optional[UploadFile] = File(None),
    filename: Optional[str] = Query(None, description="Name of a previously imported model"),
    processor: ImageProcessor = Depends(get_processor)
):
    """
    Load a model into the processor.

    Either upload a new model file (it is saved into the model library first)
    or pass the name of a model that is already in the library.
    """
    if file is not None and file.filename:
        name = safe_model_filename(file.filename)
        contents = await file.read()

        if len(contents) > settings.MAX_MODEL_SIZE_BYTES:
            raise HTTPException(
                status_code=413,
                detail=f"Model file exceeds the {settings.MAX_MODEL_SIZE_BYTES} byte limit"
            )

        path = model_library_path(name)
        await asyncio.to_thread(path.write_bytes, contents)
        logger.info("model_imported", model_file=name, size_bytes=len(contents))

    elif filename:
        path = model_library_path(filename)
        if not path.is_file():
            raise HTTPException(status_code=404, detail=f"Model not found: {path.name}")

    else:
        raise HTTPException(status_code=400, detail="No model file provided")

    model_info = await asyncio.to_thread(processor.load_model, path)

    return ModelLoadResponse(
        success=True,
        model=processor.model_name,
        message=f"Model {path.name} loaded successfully",
        model_info=model_info
    )


@router.get("", response_model=ModelListResponse)
async def list_models():
    """List the model files in the model library."""
    models_dir = Path(settings.MODELS_DIR)
    if not models_dir.is_dir():
        return ModelListResponse(models=[])

    models = sorted(
        entry.name for entry in models_dir.iterdir()
        if entry.is_file() and entry.suffix.lower() in settings.allowed_model_extensions
    )
    return ModelListResponse(models=models)


@router.delete("/{filename}", response_model=ModelDeleteResponse)
async def delete_model(
    filename: str,
    processor: ImageProcessor = Depends(get_processor)
):
    """Delete a model file. Deleting the loaded model also unloads it."""
    path = model_library_path(filename)
    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"Model not found: {path.name}")

    unloaded = False
    if processor.model_path is not None and processor.model_path.resolve() == path.resolve():
        processor.unload_model()
        unloaded = True

    await asyncio.to_thread(path.unlink)
    logger.info("model_deleted", model_file=path.name, unloaded=unloaded)

    return ModelDeleteResponse(
        success=True,
        message=f"Model {path.name} deleted successfully",
        unloaded=unloaded
    )
