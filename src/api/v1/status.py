"""
Status Endpoint - Processing Progress

GET /api/v1/status - Whether a request is running, and its tile progress
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.api.dependencies import get_processor
from src.engines.restoration.schemas import ProcessingState
from src.pipeline.processor import ImageProcessor

router = APIRouter()


class ProcessorStatusResponse(BaseModel):
    """Snapshot of the processor."""
    processing: bool
    model_loaded: bool
    model_name: Optional[str] = None
    state: ProcessingState


@router.get("", response_model=ProcessorStatusResponse)
async def get_status(processor: ImageProcessor = Depends(get_processor)):
    """
    Lightweight progress info for polling.

    The state of the last request stays readable after it finishes and is
    reset when the next one starts.
    """
    return ProcessorStatusResponse(
        processing=processor.is_processing(),
        model_loaded=processor.is_model_loaded,
        model_name=processor.model_name,
        state=processor.get_processing_state()
    )
