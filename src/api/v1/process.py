"""
Process Endpoint - Tiled Image Restoration

POST /api/v1/process - Restore an uploaded image with the loaded model.

With form field progress=true the response is a Server-Sent-Events stream:
- {"type": "progress", "state": {...}} once the tile count is known and per tile
- {"type": "complete", "image": <base64 PNG>, "filename": ...} on success
- {"type": "error", "error": ...} on failure

Otherwise the restored PNG is returned as an attachment.
"""

import asyncio
import base64
import json
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response, StreamingResponse

from src.api.dependencies import get_processor
from src.core.config import settings
from src.core.exceptions import DejpegBaseException, NoModelLoadedError, ProcessorBusyError
from src.core.logging import get_logger
from src.engines.restoration.schemas import ProcessingState
from src.pipeline.processor import ImageProcessor

logger = get_logger(__name__)
router = APIRouter()


def output_filename(upload_name: Optional[str], model_name: Optional[str]) -> str:
    """<input stem>_<model name>.png"""
    stem = Path(upload_name or "image").stem or "image"
    return f"{stem}_{model_name}.png"


def _sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


def _log_abandoned_failure(task: asyncio.Future):
    """Retrieve the worker outcome even if the SSE client has gone away."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug("processing_task_failed", error=str(error), error_type=type(error).__name__)


async def stream_processing(
    processor: ImageProcessor,
    image_bytes: bytes,
    strength: float,
    filename: str
) -> AsyncGenerator[str, None]:
    """
    Run processing in a worker thread and relay its progress as SSE events.

    Progress callbacks fire on the worker thread and are handed to the event
    loop through call_soon_threadsafe, so they arrive in callback order and
    before the completion event.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_progress(state: ProcessingState):
        loop.call_soon_threadsafe(queue.put_nowait, {"type": "progress", "state": state.model_dump()})

    task = asyncio.ensure_future(
        asyncio.to_thread(processor.process_image, image_bytes, strength, on_progress)
    )
    task.add_done_callback(lambda _: queue.put_nowait(None))
    task.add_done_callback(_log_abandoned_failure)

    while True:
        event = await queue.get()
        if event is None:
            break
        yield _sse(event)

    try:
        output = task.result()
    except DejpegBaseException as e:
        yield _sse({"type": "error", "error": e.message, "code": e.code, "stage": e.stage})
        return
    except Exception as e:
        logger.error("processing_stream_failed", error=str(e), error_type=type(e).__name__)
        yield _sse({"type": "error", "error": "Internal server error", "code": 500, "stage": None})
        return

    yield _sse({
        "type": "complete",
        "image": base64.b64encode(output).decode("ascii"),
        "filename": filename
    })


# =============================================================================
# Endpoints
# =============================================================================

@router.post("")
async def process_image(
    file: UploadFile = File(...),
    strength: float = Form(settings.DEFAULT_STRENGTH, ge=0.0, le=1.0),
    progress: str = Form("false"),
    processor: ImageProcessor = Depends(get_processor)
):
    """
    Restore an uploaded image.

    The whole image is cut into overlapping tiles, each tile is run through
    the loaded model and the results are blended back together.
    """
    if not processor.is_model_loaded:
        raise NoModelLoadedError()
    if processor.is_processing():
        raise ProcessorBusyError()

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="No image file provided")
    if len(contents) > settings.MAX_IMAGE_SIZE_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"Image exceeds the {settings.MAX_IMAGE_SIZE_BYTES} byte limit"
        )

    filename = output_filename(file.filename, processor.model_name)
    logger.info(
        "process_request_received",
        upload_name=file.filename,
        size_bytes=len(contents),
        strength=strength,
        streaming=progress.lower() == "true"
    )

    if progress.lower() == "true":
        return StreamingResponse(
            stream_processing(processor, contents, strength, filename),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            }
        )

    output = await asyncio.to_thread(processor.process_image, contents, strength)
    return Response(
        content=output,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
