"""
Image Processor - Tiled Restoration Pipeline

Owns the loaded model and runs one processing request at a time:
decode -> plan tiles -> per-tile inference -> feathered compositing -> PNG.

A non-blocking lock guards the processor: a second request (or a model
load) while one is in flight fails immediately with ProcessorBusyError.
Tile buffers are staged in request-scoped storage that is always cleaned
up, including on failure.
"""

import contextvars
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, List, Optional, Union

import numpy as np

from src.core.config import settings
from src.core.exceptions import (
    DejpegBaseException,
    ImageProcessingError,
    InvalidImageError,
    ModelLoadError,
    NoModelLoadedError,
    ProcessorBusyError,
    STAGE_CHUNKING,
    STAGE_COMPOSITING,
    STAGE_INFERENCE,
    STAGE_INIT,
)
from src.core.logging import LogContext, get_logger, with_logging
from src.core.metrics import (
    record_busy_rejection,
    record_model_load,
    record_processing_finished,
    record_processing_started,
    record_tile_completion,
    track_stage_latency,
)
from src.core.storage import ITileStorage, TileStorageFactory
from src.engines.restoration.codec import decode_image, encode_png
from src.engines.restoration.compositor import FeatheredCompositor
from src.engines.restoration.engine import IInferenceEngine, OnnxInferenceEngine
from src.engines.restoration.introspection import ModelIntrospector, build_probe
from src.engines.restoration.planner import plan_tiles, policy_for_model
from src.engines.restoration.runner import TileInferenceRunner
from src.engines.restoration.schemas import ModelInfo, ProcessingState, Tile, TilePolicy

logger = get_logger(__name__)

ProgressCallback = Callable[[ProcessingState], None]
EngineFactory = Callable[[Path], IInferenceEngine]
StorageFactory = Callable[[int, int], ITileStorage]


@contextmanager
def pipeline_stage(stage: str):
    """
    Track latency for a stage and wrap unexpected failures.

    Errors already in the service hierarchy propagate untouched; anything
    else becomes an ImageProcessingError for this stage.
    """
    try:
        with track_stage_latency(stage):
            yield
    except DejpegBaseException:
        raise
    except Exception as e:
        raise ImageProcessingError(f"{stage} failed: {e}", stage=stage) from e


class ImageProcessor:
    """Applies a loaded restoration model to arbitrarily large images."""

    def __init__(
        self,
        engine_factory: Optional[EngineFactory] = None,
        introspector: Optional[ModelIntrospector] = None,
        storage_factory: Optional[StorageFactory] = None,
        tile_workers: Optional[int] = None
    ):
        self.engine_factory = engine_factory or OnnxInferenceEngine.from_path
        self.introspector = introspector or ModelIntrospector(
            build_probe(settings.INPUT_PROBE, settings.PROBE_TENSOR_SIZE)
        )
        self.storage_factory = storage_factory or TileStorageFactory.for_image
        self.tile_workers = max(1, tile_workers if tile_workers is not None else settings.TILE_WORKERS)

        self.engine: Optional[IInferenceEngine] = None
        self.model_name: Optional[str] = None
        self.model_path: Optional[Path] = None
        self.model_info: Optional[ModelInfo] = None

        self._busy = threading.Lock()
        self._state_lock = threading.Lock()
        self._callback_lock = threading.Lock()
        self._state = ProcessingState()

    # =========================================================================
    # Model lifecycle
    # =========================================================================

    @property
    def is_model_loaded(self) -> bool:
        return self.engine is not None and self.model_info is not None

    def is_processing(self) -> bool:
        return self._busy.locked()

    def _clear_model(self):
        self.engine = None
        self.model_name = None
        self.model_path = None
        self.model_info = None

    def _acquire(self, action: str):
        if not self._busy.acquire(blocking=False):
            record_busy_rejection()
            logger.warning("processor_busy", action=action)
            raise ProcessorBusyError()

    def load_model(self, model_path: Union[str, Path]) -> ModelInfo:
        """
        Load a model file and introspect its inputs.

        Any failure leaves the processor with no model loaded.

        Raises:
            ModelLoadError: if the file is missing or the engine rejects it
            ProcessorBusyError: if a request is in flight
        """
        self._acquire("load_model")
        path = Path(model_path)
        start = time.time()
        try:
            self._clear_model()

            if not path.is_file():
                raise ModelLoadError(f"model file not found: {path}", model_path=str(path))

            logger.info("model_loading", path=str(path))
            engine = self.engine_factory(path)
            logger.info(
                "model_io",
                input_names=list(engine.input_names),
                output_names=list(engine.output_names)
            )

            model_info = self.introspector.inspect(engine)

            self.engine = engine
            self.model_name = path.stem
            self.model_path = path
            self.model_info = model_info

            elapsed = time.time() - start
            record_model_load("success", elapsed)
            logger.info(
                "model_loaded",
                model_name=self.model_name,
                model_info=model_info.model_dump(),
                load_time_seconds=round(elapsed, 3)
            )
            return model_info

        except ModelLoadError as e:
            self._clear_model()
            record_model_load("failure")
            logger.error("model_load_failed", path=str(path), error=e.message)
            raise
        except Exception as e:
            self._clear_model()
            record_model_load("failure")
            logger.error("model_load_failed", path=str(path), error=str(e))
            raise ModelLoadError(f"failed to load model: {e}", model_path=str(path)) from e
        finally:
            self._busy.release()

    def unload_model(self):
        """Drop the loaded model."""
        self._acquire("unload_model")
        try:
            if self.model_name:
                logger.info("model_unloaded", model_name=self.model_name)
            self._clear_model()
        finally:
            self._busy.release()

    # =========================================================================
    # Progress
    # =========================================================================

    def get_processing_state(self) -> ProcessingState:
        with self._state_lock:
            return self._state.model_copy()

    def _report(self, on_progress: ProgressCallback, snapshot: ProcessingState):
        """Deliver a snapshot of the state. Caller holds the callback lock."""
        try:
            on_progress(snapshot)
        except Exception as e:
            logger.warning("progress_callback_failed", error=str(e))

    def _start_tiles(self, total_tiles: int, on_progress: Optional[ProgressCallback]):
        with self._callback_lock:
            with self._state_lock:
                self._state.total_tiles = total_tiles
                self._state.completed_tiles = 0
                snapshot = self._state.model_copy()
            if on_progress is not None:
                self._report(on_progress, snapshot)

    def _complete_tile(self, on_progress: Optional[ProgressCallback]):
        # Callbacks run outside the state lock so they may read processor state
        with self._callback_lock:
            with self._state_lock:
                self._state.completed_tiles += 1
                snapshot = self._state.model_copy()
            logger.info(
                "tile_completed",
                completed_tiles=snapshot.completed_tiles,
                total_tiles=snapshot.total_tiles
            )
            if on_progress is not None:
                self._report(on_progress, snapshot)

    # =========================================================================
    # Processing
    # =========================================================================

    def process_image(
        self,
        image_bytes: bytes,
        strength: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> bytes:
        """
        Restore an encoded image and return it as PNG bytes.

        Args:
            image_bytes: any raster format Pillow can decode
            strength: restoration strength in [0, 1] (defaults to DEFAULT_STRENGTH)
            on_progress: called with a ProcessingState snapshot once the tile
                count is known and after every finished tile

        Raises:
            NoModelLoadedError, ProcessorBusyError, InvalidImageError,
            ImageProcessingError, InferenceEngineError
        """
        if not self.is_model_loaded:
            raise NoModelLoadedError()

        self._acquire("process_image")
        strength = settings.DEFAULT_STRENGTH if strength is None else strength
        request_id = str(uuid.uuid4())
        storage: Optional[ITileStorage] = None
        start = time.time()
        record_processing_started()

        with LogContext(request_id=request_id, stage=STAGE_INIT):
            try:
                with self._state_lock:
                    self._state = ProcessingState()

                if not 0.0 <= strength <= 1.0:
                    raise InvalidImageError(f"strength must be within [0, 1], got {strength}")

                with pipeline_stage(STAGE_INIT):
                    pixels = decode_image(image_bytes)
                height, width = pixels.shape[:2]
                policy = policy_for_model(self.model_name)

                logger.info(
                    "processing_started",
                    width=width,
                    height=height,
                    channels=pixels.shape[2],
                    strength=strength,
                    model_name=self.model_name,
                    tile_size=policy.tile_size,
                    overlap=policy.overlap
                )

                with pipeline_stage(STAGE_CHUNKING):
                    storage = self.storage_factory(width, height)
                    tiles = self._plan_tiles(pixels, policy, storage)
                del pixels

                self._start_tiles(len(tiles), on_progress)

                with pipeline_stage(STAGE_INFERENCE):
                    self._run_tiles(tiles, storage, strength, on_progress)

                with pipeline_stage(STAGE_COMPOSITING):
                    output = self._composite(tiles, storage, width, height, policy)

                duration_ms = int((time.time() - start) * 1000)
                record_processing_finished("completed")
                logger.info(
                    "processing_completed",
                    tiles=len(tiles),
                    output_size=len(output),
                    duration_ms=duration_ms
                )
                return output

            except DejpegBaseException as e:
                record_processing_finished("failed", e.stage or "unknown")
                logger.error(
                    "processing_failed",
                    error=e.message,
                    error_type=type(e).__name__,
                    failed_stage=e.stage
                )
                raise
            except Exception as e:
                record_processing_finished("failed", "unknown")
                logger.error("processing_failed", error=str(e), error_type=type(e).__name__)
                raise
            finally:
                if storage is not None:
                    storage.cleanup()
                self._busy.release()

    @with_logging(STAGE_CHUNKING)
    def _plan_tiles(self, pixels: np.ndarray, policy: TilePolicy, storage: ITileStorage) -> List[Tile]:
        height, width = pixels.shape[:2]
        tiles = plan_tiles(width, height, policy)

        for tile in tiles:
            region = pixels[tile.y:tile.bottom, tile.x:tile.right]
            storage.save_source(tile, np.ascontiguousarray(region).copy())

        logger.info(
            "tiles_planned",
            tiles=len(tiles),
            rows=tiles[-1].row + 1,
            cols=tiles[-1].col + 1
        )
        return tiles

    def _process_tile(
        self,
        tile: Tile,
        runner: TileInferenceRunner,
        storage: ITileStorage,
        strength: float,
        on_progress: Optional[ProgressCallback]
    ):
        logger.info("tile_processing", row=tile.row, col=tile.col, x=tile.x, y=tile.y)
        start = time.time()

        processed = runner.run(storage.load_source(tile), strength)
        storage.save_processed(tile, processed)

        record_tile_completion(time.time() - start)
        self._complete_tile(on_progress)

    @with_logging(STAGE_INFERENCE)
    def _run_tiles(
        self,
        tiles: List[Tile],
        storage: ITileStorage,
        strength: float,
        on_progress: Optional[ProgressCallback]
    ):
        runner = TileInferenceRunner(self.engine, self.model_info)

        if self.tile_workers == 1 or len(tiles) == 1:
            for tile in tiles:
                self._process_tile(tile, runner, storage, strength, on_progress)
            return

        with ThreadPoolExecutor(max_workers=self.tile_workers) as pool:
            futures = [
                pool.submit(
                    contextvars.copy_context().run,
                    self._process_tile, tile, runner, storage, strength, on_progress
                )
                for tile in tiles
            ]
            try:
                for future in as_completed(futures):
                    future.result()
            except Exception:
                for future in futures:
                    future.cancel()
                raise

    @with_logging(STAGE_COMPOSITING)
    def _composite(
        self,
        tiles: List[Tile],
        storage: ITileStorage,
        width: int,
        height: int,
        policy: TilePolicy
    ) -> bytes:
        logger.info("compositing_started", tiles=len(tiles), feather_size=policy.feather_size)
        # A single full-frame tile has no internal seams, so feathering is a no-op
        compositor = FeatheredCompositor(width, height, policy.feather_size)
        for tile in tiles:
            compositor.add(tile, storage.load_processed(tile))
        return encode_png(compositor.result())
