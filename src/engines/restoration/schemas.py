from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field


# Marker for an unbound (dynamic) tensor dimension
DYNAMIC_DIM = -1


class ModelInfo(BaseModel):
    """What the introspector learned about a loaded model's inputs."""
    model_config = ConfigDict(frozen=True)

    image_input_name: str = Field(..., description="Name of the input that carries the image tensor")
    image_input_shape: Tuple[int, int, int, int] = Field(
        ..., description="(batch, channels, height, width); -1 marks a dynamic dimension"
    )
    is_grayscale: bool = Field(False, description="True when the model takes a single-channel image")
    has_quality_input: bool = Field(False, description="True when a strength/quality scalar input exists")
    quality_input_name: Optional[str] = Field(None, description="Name of the strength/quality input")

    @property
    def channels(self) -> int:
        return 1 if self.is_grayscale else 3


class ProcessingState(BaseModel):
    """Progress of the active processing request."""
    total_tiles: int = 0
    completed_tiles: int = 0
    current_image_index: int = 1
    total_images: int = 1


class TilePolicy(BaseModel):
    """Tile size and overlap used to cut an image for one model family."""
    model_config = ConfigDict(frozen=True)

    tile_size: int = Field(..., gt=0)
    overlap: int = Field(..., ge=0)

    @property
    def stride(self) -> int:
        return self.tile_size - self.overlap

    @property
    def feather_size(self) -> int:
        return self.overlap // 2


@dataclass
class Tile:
    """
    One rectangular region of the source image.

    x/y/width/height are the extraction bounds (expanded into the overlap);
    origin_x/origin_y are the non-overlapping grid cell origin.
    """
    x: int
    y: int
    width: int
    height: int
    origin_x: int
    origin_y: int
    row: int
    col: int
    source_pixels: Optional[np.ndarray] = None
    processed_pixels: Optional[np.ndarray] = None

    @property
    def key(self) -> str:
        return f"{self.x}_{self.y}"

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def release(self):
        """Drop both pixel buffers."""
        self.source_pixels = None
        self.processed_pixels = None
