"""
Feathered Compositor

Reassembles processed tiles onto an opaque canvas. Each tile gets an alpha
ramp of feather_size pixels along every edge that is an internal seam
(edges on the image boundary stay fully opaque), and is painted over the
canvas with standard alpha-over blending. Because a tile's ramp always lies
where its neighbour is fully opaque, overlap bands blend without seams.
"""

from typing import Iterable, Optional

import numpy as np

from src.core.exceptions import ImageProcessingError, STAGE_COMPOSITING
from src.engines.restoration.schemas import Tile


def feather_weights(
    width: int,
    height: int,
    feather_size: int,
    left: bool,
    top: bool,
    right: bool,
    bottom: bool
) -> np.ndarray:
    """
    Per-pixel alpha for a tile, shape (height, width), float32 in [0, 1].

    Each flag enables the linear ramp on that edge; ramps combine with min.
    """
    if feather_size <= 0:
        return np.ones((height, width), dtype=np.float32)

    size = np.float32(feather_size)
    xs = np.arange(width, dtype=np.float32)
    ys = np.arange(height, dtype=np.float32)

    column_alpha = np.ones(width, dtype=np.float32)
    row_alpha = np.ones(height, dtype=np.float32)

    if left:
        ramp = xs < feather_size
        column_alpha[ramp] = np.minimum(column_alpha[ramp], xs[ramp] / size)
    if right:
        ramp = xs >= width - feather_size
        column_alpha[ramp] = np.minimum(column_alpha[ramp], (width - xs[ramp]) / size)
    if top:
        ramp = ys < feather_size
        row_alpha[ramp] = np.minimum(row_alpha[ramp], ys[ramp] / size)
    if bottom:
        ramp = ys >= height - feather_size
        row_alpha[ramp] = np.minimum(row_alpha[ramp], (height - ys[ramp]) / size)

    return np.minimum(row_alpha[:, np.newaxis], column_alpha[np.newaxis, :])


def _to_rgb(pixels: np.ndarray) -> np.ndarray:
    if pixels.ndim == 2:
        pixels = pixels[:, :, np.newaxis]
    channels = pixels.shape[2]
    if channels == 1:
        return np.repeat(pixels, 3, axis=2)
    if channels == 2:
        # gray + alpha: keep the gray plane
        return np.repeat(pixels[:, :, :1], 3, axis=2)
    return pixels[:, :, :3]


class FeatheredCompositor:
    """Accumulates processed tiles into a width x height RGB image."""

    def __init__(self, width: int, height: int, feather_size: int):
        self.width = width
        self.height = height
        self.feather_size = feather_size
        self._canvas = np.zeros((height, width, 3), dtype=np.float32)

    def tile_weights(self, tile: Tile) -> np.ndarray:
        return feather_weights(
            tile.width,
            tile.height,
            self.feather_size,
            left=tile.x > 0,
            top=tile.y > 0,
            right=tile.right < self.width,
            bottom=tile.bottom < self.height,
        )

    def add(self, tile: Tile, pixels: Optional[np.ndarray] = None):
        """Paint one processed tile at its extraction origin."""
        pixels = tile.processed_pixels if pixels is None else pixels
        if pixels is None:
            raise ImageProcessingError(f"tile {tile.key} has no processed pixels", stage=STAGE_COMPOSITING)

        rgb = _to_rgb(pixels)
        if rgb.shape[0] != tile.height or rgb.shape[1] != tile.width:
            raise ImageProcessingError(
                f"processed tile {tile.key} is {rgb.shape[1]}x{rgb.shape[0]}, "
                f"expected {tile.width}x{tile.height}",
                stage=STAGE_COMPOSITING
            )
        if tile.x < 0 or tile.y < 0 or tile.right > self.width or tile.bottom > self.height:
            raise ImageProcessingError(f"tile {tile.key} lies outside the canvas", stage=STAGE_COMPOSITING)

        alpha = self.tile_weights(tile)[:, :, np.newaxis]
        region = self._canvas[tile.y:tile.bottom, tile.x:tile.right]
        region *= 1.0 - alpha
        region += rgb.astype(np.float32) * alpha

    def result(self) -> np.ndarray:
        """Flatten the canvas to opaque (H, W, 3) uint8."""
        return np.clip(np.rint(self._canvas), 0, 255).astype(np.uint8)


def composite_tiles(tiles: Iterable[Tile], width: int, height: int, feather_size: int) -> np.ndarray:
    """Composite tiles that carry their processed pixels."""
    compositor = FeatheredCompositor(width, height, feather_size)
    for tile in tiles:
        compositor.add(tile)
    return compositor.result()
