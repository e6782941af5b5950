import io
from typing import AsyncGenerator, Callable, Dict, List, Optional, Sequence

import numpy as np
import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image

from src.api.dependencies import get_processor
from src.core.config import settings
from src.core.exceptions import InferenceEngineError
from src.core.storage import InMemoryTileStorage
from src.engines.restoration.engine import IInferenceEngine
from src.main import app
from src.pipeline.processor import ImageProcessor


class FakeEngine(IInferenceEngine):
    """
    In-memory stand-in for an ONNX session.

    Accepts image tensors with `channels` planes on its first input and
    returns `transform(image)` (identity by default) for every output.
    """

    def __init__(
        self,
        inputs: Sequence[str] = ("input",),
        outputs: Sequence[str] = ("output",),
        channels: int = 3,
        shapes: Optional[Dict[str, list]] = None,
        transform: Optional[Callable[[np.ndarray], np.ndarray]] = None,
        fail_on_call: Optional[int] = None
    ):
        self._inputs = list(inputs)
        self._outputs = list(outputs)
        self.channels = channels
        self.shapes = shapes or {}
        self.transform = transform or (lambda image: image)
        self.fail_on_call = fail_on_call
        self.calls: List[Dict[str, np.ndarray]] = []

    @property
    def input_names(self) -> List[str]:
        return list(self._inputs)

    @property
    def output_names(self) -> List[str]:
        return list(self._outputs)

    def input_shape(self, name: str):
        return self.shapes.get(name, [1, self.channels, None, None])

    def run(self, feeds, output_names=None):
        self.calls.append(feeds)
        image = feeds[self._inputs[0]]
        if image.shape[1] != self.channels:
            raise InferenceEngineError(
                f"Got invalid dimensions for input: expected {self.channels} channels, got {image.shape[1]}"
            )
        if self.fail_on_call is not None and len(self.calls) >= self.fail_on_call:
            raise InferenceEngineError("inference failed: device lost", engine_error="device lost")
        result = self.transform(image)
        return {name: result for name in (output_names or self._outputs)}


def make_png(width: int, height: int, color=(120, 60, 200), mode: str = "RGB") -> bytes:
    image = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def decode_png(data: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(data)) as image:
        return np.asarray(image.convert("RGB"))


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Keep the model library and tile staging inside the test's tmp dir."""
    models_dir = tmp_path / "models"
    temp_dir = tmp_path / "temp"
    models_dir.mkdir()
    temp_dir.mkdir()
    monkeypatch.setattr(settings, "MODELS_DIR", models_dir)
    monkeypatch.setattr(settings, "TEMP_DIR", temp_dir)
    return models_dir, temp_dir


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
def png_decoder():
    return decode_png


@pytest.fixture
def fake_engine_class():
    return FakeEngine


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def model_file(isolated_dirs):
    models_dir, _ = isolated_dirs
    path = models_dir / "dejpeg_test.onnx"
    path.write_bytes(b"not-a-real-model")
    return path


@pytest.fixture
def processor(engine) -> ImageProcessor:
    return ImageProcessor(
        engine_factory=lambda path: engine,
        storage_factory=lambda width, height: InMemoryTileStorage(),
        tile_workers=1
    )


@pytest.fixture
async def client(processor) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_processor] = lambda: processor
    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()
