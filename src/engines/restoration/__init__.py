"""
Restoration Engine - Tiled Inference Core

Model introspection, tile planning, tensor marshalling, per-tile inference
and feathered reassembly.
"""

from src.engines.restoration.schemas import ModelInfo, ProcessingState, Tile, TilePolicy

__all__ = ["ModelInfo", "ProcessingState", "Tile", "TilePolicy"]
