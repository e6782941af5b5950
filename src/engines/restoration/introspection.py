"""
Model Introspection

Models do not reliably say which input carries the image, whether it wants
one or three channels, or whether a strength/quality scalar is expected.
The introspector works this out once per model load.

Channel detection is a pluggable probe strategy:
- TrialInferenceProbe: run a small all-zero tensor through the model,
  first single-channel then three-channel, and keep whichever is accepted
- DeclaredShapeProbe: read a static channel dimension off the declared shape
- ChainedProbe: first probe that answers wins
"""

from abc import ABC, abstractmethod
from typing import List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from src.core.logging import get_logger
from src.engines.restoration.engine import IInferenceEngine
from src.engines.restoration.schemas import DYNAMIC_DIM, ModelInfo

logger = get_logger(__name__)

IMAGE_INPUT_HINTS = ("input", "image", "x")
QUALITY_INPUT_HINTS = ("qf", "quality", "strength")

PROBE_TRIAL = "trial"
PROBE_DECLARED = "declared"
PROBE_DECLARED_THEN_TRIAL = "declared_then_trial"


class ProbeResult(NamedTuple):
    input_name: str
    input_shape: Tuple[int, int, int, int]
    is_grayscale: bool


# =============================================================================
# Probe Strategies
# =============================================================================

class IInputProbe(ABC):
    """Strategy that classifies the image input of a model."""

    @abstractmethod
    def probe(self, engine: IInferenceEngine, candidates: Sequence[str]) -> Optional[ProbeResult]:
        """Return the first candidate it can classify, or None."""
        pass


class TrialInferenceProbe(IInputProbe):
    """Classify candidates by feeding them trial tensors."""

    def __init__(self, probe_size: int = 64):
        self.probe_size = probe_size

    def _accepts(self, engine: IInferenceEngine, name: str, channels: int) -> bool:
        shape = (1, channels, self.probe_size, self.probe_size)
        engine.run({name: np.zeros(shape, dtype=np.float32)})
        return True

    def probe(self, engine: IInferenceEngine, candidates: Sequence[str]) -> Optional[ProbeResult]:
        size = self.probe_size
        for name in candidates:
            try:
                self._accepts(engine, name, 1)
                logger.info("grayscale_image_input_detected", input_name=name)
                return ProbeResult(name, (1, 1, size, size), True)
            except Exception as gray_error:
                logger.debug("grayscale_probe_rejected", input_name=name, error=str(gray_error))

            try:
                self._accepts(engine, name, 3)
                logger.info("color_image_input_detected", input_name=name)
                return ProbeResult(name, (1, 3, size, size), False)
            except Exception as color_error:
                logger.warning("input_probe_failed", input_name=name, error=str(color_error))

        return None


class DeclaredShapeProbe(IInputProbe):
    """Classify candidates from a static channel dimension in the declared shape."""

    def probe(self, engine: IInferenceEngine, candidates: Sequence[str]) -> Optional[ProbeResult]:
        for name in candidates:
            try:
                shape = list(engine.input_shape(name))
            except Exception as e:
                logger.warning("input_shape_unavailable", input_name=name, error=str(e))
                continue

            if len(shape) != 4 or shape[1] not in (1, 3):
                continue

            dims = tuple(d if isinstance(d, int) and d > 0 else DYNAMIC_DIM for d in shape)
            is_grayscale = shape[1] == 1
            logger.info(
                "image_input_declared",
                input_name=name,
                shape=list(dims),
                grayscale=is_grayscale
            )
            return ProbeResult(name, dims, is_grayscale)

        return None


class ChainedProbe(IInputProbe):
    """Try several probes in order."""

    def __init__(self, probes: Sequence[IInputProbe]):
        self.probes = list(probes)

    def probe(self, engine: IInferenceEngine, candidates: Sequence[str]) -> Optional[ProbeResult]:
        for strategy in self.probes:
            result = strategy.probe(engine, candidates)
            if result is not None:
                return result
        return None


def build_probe(kind: str = PROBE_TRIAL, probe_size: int = 64) -> IInputProbe:
    """Create the probe strategy named in configuration."""
    if kind == PROBE_TRIAL:
        return TrialInferenceProbe(probe_size)
    if kind == PROBE_DECLARED:
        return DeclaredShapeProbe()
    if kind == PROBE_DECLARED_THEN_TRIAL:
        return ChainedProbe([DeclaredShapeProbe(), TrialInferenceProbe(probe_size)])
    raise ValueError(f"unknown input probe: {kind}")


# =============================================================================
# Introspector
# =============================================================================

def find_image_input_candidates(input_names: Sequence[str]) -> List[str]:
    """Inputs that may carry the image, in declaration order."""
    sole_input = len(input_names) == 1
    candidates = [
        name for name in input_names
        if sole_input
        or name == "input"
        or any(hint in name.lower() for hint in IMAGE_INPUT_HINTS)
    ]
    if not candidates and input_names:
        candidates.append(input_names[0])
    return candidates


def find_quality_input(input_names: Sequence[str], image_input_name: str) -> Optional[str]:
    """
    Name of the strength/quality input, if any.

    A name match wins; otherwise a two-input model is assumed to take the
    quality scalar as its other input. With more inputs and no match the
    quality input stays undetected.
    """
    for name in input_names:
        if name == image_input_name:
            continue
        if any(hint in name.lower() for hint in QUALITY_INPUT_HINTS):
            logger.info("quality_input_detected", input_name=name)
            return name

    if len(input_names) == 2:
        others = [name for name in input_names if name != image_input_name]
        if others:
            logger.info("quality_input_assumed", input_name=others[0])
            return others[0]

    return None


class ModelIntrospector:
    """Builds a ModelInfo for a freshly loaded engine. Never raises."""

    def __init__(self, probe: Optional[IInputProbe] = None):
        self.probe = probe or TrialInferenceProbe()

    def _fallback(self, input_names: Sequence[str]) -> ProbeResult:
        name = input_names[0] if input_names else ""
        logger.info("image_input_fallback", input_name=name, assumed="color")
        return ProbeResult(name, (1, 3, DYNAMIC_DIM, DYNAMIC_DIM), False)

    def inspect(self, engine: IInferenceEngine) -> ModelInfo:
        input_names: List[str] = []
        try:
            input_names = list(engine.input_names)
            logger.info("model_inputs", input_names=input_names)

            candidates = find_image_input_candidates(input_names)
            result = self.probe.probe(engine, candidates) or self._fallback(input_names)
            quality_name = find_quality_input(input_names, result.input_name)

            return ModelInfo(
                image_input_name=result.input_name,
                image_input_shape=result.input_shape,
                is_grayscale=result.is_grayscale,
                has_quality_input=quality_name is not None,
                quality_input_name=quality_name,
            )
        except Exception as e:
            logger.warning("model_introspection_failed", error=str(e))
            fallback = self._fallback(input_names)
            return ModelInfo(
                image_input_name=fallback.input_name,
                image_input_shape=fallback.input_shape,
                is_grayscale=False,
            )
