"""
Restoration Pipeline

decode -> tile planning -> per-tile inference -> feathered compositing -> PNG
"""

from src.pipeline.processor import ImageProcessor

__all__ = ["ImageProcessor"]
