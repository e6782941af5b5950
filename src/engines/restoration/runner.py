"""
Tile Inference Runner

Feeds one tile through the model and decodes the first declared output
back into pixels.
"""

from typing import Optional

import numpy as np

from src.core.exceptions import InferenceEngineError, NoModelLoadedError
from src.engines.restoration.codec import pixels_to_tensor, tensor_to_pixels
from src.engines.restoration.engine import IInferenceEngine
from src.engines.restoration.schemas import ModelInfo


def build_feeds(tensor: np.ndarray, model_info: ModelInfo, strength: float) -> dict:
    """Named input map for one inference call."""
    feeds = {model_info.image_input_name: tensor}
    if model_info.has_quality_input and model_info.quality_input_name:
        feeds[model_info.quality_input_name] = np.array([[strength]], dtype=np.float32)
    return feeds


class TileInferenceRunner:
    """Runs single tiles through a loaded engine."""

    def __init__(self, engine: Optional[IInferenceEngine], model_info: Optional[ModelInfo]):
        self.engine = engine
        self.model_info = model_info

    def run(self, pixels: np.ndarray, strength: float = 0.5) -> np.ndarray:
        """
        Restore one tile.

        Args:
            pixels: (H, W, C) uint8 tile
            strength: restoration strength in [0, 1], used when the model has a quality input

        Returns:
            (H', W', C') uint8 pixels decoded from the model output

        Raises:
            NoModelLoadedError: if no engine is attached
            InferenceEngineError: if the engine call fails or returns nothing
        """
        if self.engine is None or self.model_info is None:
            raise NoModelLoadedError("No model loaded")

        tensor = pixels_to_tensor(pixels, self.model_info.is_grayscale)
        feeds = build_feeds(tensor, self.model_info, strength)

        output_names = self.engine.output_names
        if not output_names:
            raise InferenceEngineError("model declares no outputs")
        first_output = output_names[0]

        outputs = self.engine.run(feeds, [first_output])
        if first_output not in outputs:
            raise InferenceEngineError(f"model returned no value for output '{first_output}'")

        try:
            return tensor_to_pixels(outputs[first_output])
        except ValueError as e:
            raise InferenceEngineError(f"unexpected model output: {e}") from e
