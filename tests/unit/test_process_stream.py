import asyncio
import gc
import json
import threading

import pytest

from src.api.v1.process import stream_processing
from src.core.exceptions import InferenceEngineError
from src.engines.restoration.schemas import ProcessingState


class StallingProcessor:
    """Reports one progress event, then fails once released."""

    def __init__(self):
        self.release = threading.Event()

    def process_image(self, image_bytes, strength, on_progress):
        on_progress(ProcessingState(total_tiles=1))
        self.release.wait(timeout=5)
        raise InferenceEngineError("inference failed: device lost", engine_error="device lost")


@pytest.mark.asyncio
async def test_stream_relays_progress_then_error():
    processor = StallingProcessor()
    processor.release.set()

    events = [json.loads(chunk[len("data: "):]) async for chunk in stream_processing(processor, b"img", 0.5, "out.png")]

    assert [e["type"] for e in events] == ["progress", "error"]
    assert events[1]["stage"] == "inference"


@pytest.mark.asyncio
async def test_disconnected_client_does_not_leave_unretrieved_failure():
    loop = asyncio.get_running_loop()
    reported = []
    loop.set_exception_handler(lambda _, context: reported.append(context))
    processor = StallingProcessor()

    try:
        stream = stream_processing(processor, b"img", 0.5, "out.png")
        first = await stream.__anext__()
        assert json.loads(first[len("data: "):])["type"] == "progress"

        await stream.aclose()
        processor.release.set()

        pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        if pending:
            await asyncio.wait(pending, timeout=5)
        del pending, stream
        gc.collect()

        assert reported == []
    finally:
        loop.set_exception_handler(None)
