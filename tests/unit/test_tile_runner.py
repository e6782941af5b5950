import numpy as np
import pytest

from src.core.exceptions import InferenceEngineError, NoModelLoadedError
from src.engines.restoration.runner import TileInferenceRunner, build_feeds
from src.engines.restoration.schemas import ModelInfo


@pytest.fixture
def color_info():
    return ModelInfo(image_input_name="input", image_input_shape=(1, 3, -1, -1))


def test_feeds_without_quality_input_only_carry_the_image(color_info):
    tensor = np.zeros((1, 3, 4, 4), dtype=np.float32)

    feeds = build_feeds(tensor, color_info, 0.3)

    assert list(feeds) == ["input"]


def test_feeds_carry_strength_as_1x1_tensor():
    info = ModelInfo(
        image_input_name="x",
        image_input_shape=(1, 3, -1, -1),
        has_quality_input=True,
        quality_input_name="qf",
    )

    feeds = build_feeds(np.zeros((1, 3, 2, 2), dtype=np.float32), info, 0.25)

    np.testing.assert_array_equal(feeds["qf"], np.array([[0.25]], dtype=np.float32))


def test_runner_without_model_raises(color_info):
    with pytest.raises(NoModelLoadedError):
        TileInferenceRunner(None, color_info).run(np.zeros((2, 2, 3), dtype=np.uint8))


def test_runner_reads_first_declared_output(fake_engine_class, color_info):
    engine = fake_engine_class(outputs=["restored", "aux"], transform=lambda image: 1.0 - image)
    pixels = np.full((3, 5, 3), 255, dtype=np.uint8)

    result = TileInferenceRunner(engine, color_info).run(pixels)

    assert result.shape == (3, 5, 3)
    assert np.all(result == 0)


def test_runner_rejects_undecodable_output(fake_engine_class, color_info):
    engine = fake_engine_class(transform=lambda image: np.zeros((2, 3, 4, 4), dtype=np.float32))

    with pytest.raises(InferenceEngineError):
        TileInferenceRunner(engine, color_info).run(np.zeros((4, 4, 3), dtype=np.uint8))
