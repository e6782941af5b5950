"""
Tile Planner

Cuts an image into a deterministic row-major grid of overlapping tiles.
Grid cells advance by (tile_size - overlap); each cell's extraction
rectangle grows by overlap // 2 into its left/top neighbours and is
clamped to the image bounds.
"""

import math
from typing import List, Optional

from src.core.config import settings
from src.engines.restoration.schemas import Tile, TilePolicy


def default_policy() -> TilePolicy:
    return TilePolicy(tile_size=settings.DEFAULT_TILE_SIZE, overlap=settings.DEFAULT_TILE_OVERLAP)


def scunet_policy() -> TilePolicy:
    return TilePolicy(tile_size=settings.SCUNET_TILE_SIZE, overlap=settings.SCUNET_TILE_OVERLAP)


def policy_for_model(model_name: Optional[str]) -> TilePolicy:
    """Pick the tile policy for a model by its name prefix."""
    if model_name and model_name.startswith(settings.SCUNET_MODEL_PREFIX):
        return scunet_policy()
    return default_policy()


def needs_chunking(width: int, height: int, policy: TilePolicy) -> bool:
    return width > policy.tile_size or height > policy.tile_size


def plan_tiles(width: int, height: int, policy: TilePolicy) -> List[Tile]:
    """
    Plan the tiles covering a width x height image.

    Images that fit in one tile come back as a single full-frame tile.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"image dimensions must be positive, got {width}x{height}")

    if not needs_chunking(width, height, policy):
        return [Tile(x=0, y=0, width=width, height=height, origin_x=0, origin_y=0, row=0, col=0)]

    stride = policy.stride
    if stride <= 0:
        raise ValueError(f"tile size {policy.tile_size} must exceed overlap {policy.overlap}")

    half_overlap = policy.overlap // 2
    cols = math.ceil(width / stride)
    rows = math.ceil(height / stride)

    tiles = []
    for row in range(rows):
        for col in range(cols):
            origin_x = col * stride
            origin_y = row * stride

            grow_x = half_overlap if col > 0 else 0
            grow_y = half_overlap if row > 0 else 0

            x = max(0, origin_x - grow_x)
            y = max(0, origin_y - grow_y)
            tile_width = min(policy.tile_size + grow_x, width - x)
            tile_height = min(policy.tile_size + grow_y, height - y)

            if tile_width <= 0 or tile_height <= 0:
                continue

            tiles.append(Tile(
                x=x,
                y=y,
                width=tile_width,
                height=tile_height,
                origin_x=origin_x,
                origin_y=origin_y,
                row=row,
                col=col,
            ))

    return tiles
