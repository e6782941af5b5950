import numpy as np
import pytest

from src.core.config import settings
from src.engines.restoration.planner import (
    default_policy,
    needs_chunking,
    plan_tiles,
    policy_for_model,
    scunet_policy,
)
from src.engines.restoration.schemas import TilePolicy


def _coverage(tiles, width, height):
    covered = np.zeros((height, width), dtype=np.int32)
    for tile in tiles:
        covered[tile.y:tile.bottom, tile.x:tile.right] += 1
    return covered


def test_default_and_scunet_policies():
    assert default_policy() == TilePolicy(tile_size=1200, overlap=32)
    assert scunet_policy() == TilePolicy(tile_size=640, overlap=128)
    assert default_policy().feather_size == 16
    assert scunet_policy().stride == 512


def test_policy_selected_by_model_name_prefix():
    assert policy_for_model("scunet_color_real_psnr") == scunet_policy()
    assert policy_for_model("fbcnn_color") == default_policy()
    assert policy_for_model("my_scunet_copy") == default_policy()
    assert policy_for_model(None) == default_policy()


def test_small_image_is_a_single_tile():
    policy = default_policy()
    assert not needs_chunking(500, 500, policy)

    tiles = plan_tiles(500, 500, policy)

    assert len(tiles) == 1
    tile = tiles[0]
    assert (tile.x, tile.y, tile.width, tile.height) == (0, 0, 500, 500)
    assert (tile.row, tile.col) == (0, 0)


def test_image_exactly_tile_sized_is_not_chunked():
    assert len(plan_tiles(1200, 1200, default_policy())) == 1


def test_2000_square_image_gives_two_by_two_grid():
    tiles = plan_tiles(2000, 2000, default_policy())

    assert len(tiles) == 4
    assert [(t.row, t.col) for t in tiles] == [(0, 0), (0, 1), (1, 0), (1, 1)]

    first, second = tiles[0], tiles[1]
    assert (first.x, first.y, first.width, first.height) == (0, 0, 1200, 1200)
    assert (second.origin_x, second.origin_y) == (1168, 0)
    assert second.x == 1168 - 16
    assert second.right == 2000


def test_wide_image_chunks_even_when_height_fits():
    tiles = plan_tiles(3000, 400, default_policy())

    assert len(tiles) == 3
    assert all(t.row == 0 for t in tiles)
    assert all(t.height == 400 for t in tiles)


@pytest.mark.parametrize("width,height,tile_size,overlap", [
    (2000, 2000, 1200, 32),
    (1201, 1199, 1200, 32),
    (3001, 2503, 640, 128),
    (97, 53, 16, 4),
    (50, 50, 10, 0),
    (33, 70, 8, 7),
])
def test_tiles_cover_image_without_degenerate_rectangles(width, height, tile_size, overlap):
    policy = TilePolicy(tile_size=tile_size, overlap=overlap)
    tiles = plan_tiles(width, height, policy)

    assert all(t.width > 0 and t.height > 0 for t in tiles)
    assert all(t.x >= 0 and t.y >= 0 and t.right <= width and t.bottom <= height for t in tiles)
    assert _coverage(tiles, width, height).min() >= 1


@pytest.mark.parametrize("width,height,tile_size,overlap", [
    (2000, 2000, 1200, 32),
    (3001, 2503, 640, 128),
    (97, 53, 16, 4),
])
def test_adjacent_tiles_overlap_by_at_least_half_the_overlap(width, height, tile_size, overlap):
    policy = TilePolicy(tile_size=tile_size, overlap=overlap)
    tiles = plan_tiles(width, height, policy)
    by_cell = {(t.row, t.col): t for t in tiles}

    for (row, col), tile in by_cell.items():
        right = by_cell.get((row, col + 1))
        if right is not None:
            assert tile.right - right.x >= overlap // 2
        below = by_cell.get((row + 1, col))
        if below is not None:
            assert tile.bottom - below.y >= overlap // 2


def test_tiles_are_row_major():
    tiles = plan_tiles(97, 53, TilePolicy(tile_size=16, overlap=4))
    order = [(t.row, t.col) for t in tiles]
    assert order == sorted(order)


def test_planner_rejects_invalid_inputs():
    with pytest.raises(ValueError):
        plan_tiles(0, 100, default_policy())
    with pytest.raises(ValueError):
        plan_tiles(100, 100, TilePolicy(tile_size=10, overlap=10))


def test_policy_follows_settings(monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_TILE_SIZE", 300)
    monkeypatch.setattr(settings, "DEFAULT_TILE_OVERLAP", 16)

    assert default_policy() == TilePolicy(tile_size=300, overlap=16)
    assert len(plan_tiles(500, 500, default_policy())) == 4
