"""
Tile Storage Abstraction

Per-request staging for extracted and processed tile buffers.
InMemoryTileStorage keeps buffers on the Tile objects; DiskTileStorage
writes them under a request-specific temp folder so very large images do
not hold every tile in memory. Both release everything in cleanup(),
which logs failures instead of raising.
"""

import shutil
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import numpy as np

from src.core.config import settings
from src.core.exceptions import TileStorageError
from src.core.logging import get_logger
from src.engines.restoration.schemas import Tile

logger = get_logger(__name__)


class ITileStorage(ABC):
    """Interface for tile staging - scoped to one processing request"""

    @abstractmethod
    def save_source(self, tile: Tile, pixels: np.ndarray) -> None:
        """Stage the extracted source pixels of a tile."""
        pass

    @abstractmethod
    def load_source(self, tile: Tile) -> np.ndarray:
        """Return the staged source pixels of a tile."""
        pass

    @abstractmethod
    def save_processed(self, tile: Tile, pixels: np.ndarray) -> None:
        """Stage the model output of a tile and drop its source buffer."""
        pass

    @abstractmethod
    def load_processed(self, tile: Tile) -> np.ndarray:
        """Return the staged model output of a tile."""
        pass

    @abstractmethod
    def cleanup(self) -> None:
        """Release every staged buffer. Never raises."""
        pass


class InMemoryTileStorage(ITileStorage):
    """Keeps buffers on the Tile objects themselves."""

    def __init__(self):
        self._tiles = {}

    def save_source(self, tile: Tile, pixels: np.ndarray) -> None:
        tile.source_pixels = pixels
        self._tiles[tile.key] = tile

    def load_source(self, tile: Tile) -> np.ndarray:
        if tile.source_pixels is None:
            raise TileStorageError(f"no source pixels staged for tile {tile.key}")
        return tile.source_pixels

    def save_processed(self, tile: Tile, pixels: np.ndarray) -> None:
        tile.processed_pixels = pixels
        tile.source_pixels = None
        self._tiles[tile.key] = tile

    def load_processed(self, tile: Tile) -> np.ndarray:
        if tile.processed_pixels is None:
            raise TileStorageError(f"no processed pixels staged for tile {tile.key}")
        return tile.processed_pixels

    def cleanup(self) -> None:
        for tile in self._tiles.values():
            tile.release()
        self._tiles.clear()


class DiskTileStorage(ITileStorage):
    """Stages buffers as .npy files in chunks_<id>/ and processed_<id>/ folders."""

    def __init__(self, base_path: Optional[Path] = None):
        base_path = Path(base_path or settings.TEMP_DIR)
        session_id = uuid.uuid4().hex
        self.chunk_dir = base_path / f"chunks_{session_id}"
        self.processed_dir = base_path / f"processed_{session_id}"
        try:
            self.chunk_dir.mkdir(parents=True, exist_ok=True)
            self.processed_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TileStorageError(f"could not create tile staging folders: {e}") from e

    def _chunk_path(self, tile: Tile) -> Path:
        return self.chunk_dir / f"chunk_{tile.key}.npy"

    def _processed_path(self, tile: Tile) -> Path:
        return self.processed_dir / f"processed_{tile.key}.npy"

    @staticmethod
    def _write(path: Path, pixels: np.ndarray):
        try:
            np.save(path, pixels, allow_pickle=False)
        except OSError as e:
            raise TileStorageError(f"could not stage {path.name}: {e}") from e

    @staticmethod
    def _read(path: Path) -> np.ndarray:
        try:
            return np.load(path, allow_pickle=False)
        except OSError as e:
            raise TileStorageError(f"could not read staged {path.name}: {e}") from e

    def save_source(self, tile: Tile, pixels: np.ndarray) -> None:
        self._write(self._chunk_path(tile), pixels)

    def load_source(self, tile: Tile) -> np.ndarray:
        return self._read(self._chunk_path(tile))

    def save_processed(self, tile: Tile, pixels: np.ndarray) -> None:
        self._write(self._processed_path(tile), pixels)
        self._chunk_path(tile).unlink(missing_ok=True)

    def load_processed(self, tile: Tile) -> np.ndarray:
        return self._read(self._processed_path(tile))

    def cleanup(self) -> None:
        for folder in (self.chunk_dir, self.processed_dir):
            try:
                if folder.exists():
                    shutil.rmtree(folder)
                    logger.info("tile_storage_cleaned", path=str(folder))
            except OSError as e:
                logger.warning("tile_storage_cleanup_failed", path=str(folder), error=str(e))


class TileStorageFactory:
    """Picks in-memory or disk staging by image size."""

    @staticmethod
    def for_image(width: int, height: int) -> ITileStorage:
        if width * height >= settings.DISK_STAGING_MIN_PIXELS:
            return DiskTileStorage(settings.TEMP_DIR)
        return InMemoryTileStorage()
