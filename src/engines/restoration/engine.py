"""
Inference Engine Contract

The pipeline only needs an executor that takes named float tensors and
returns named output tensors. OnnxInferenceEngine wraps an ONNX Runtime
session; tests substitute lightweight fakes.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import onnxruntime as ort

from src.core.exceptions import InferenceEngineError, ModelLoadError
from src.core.logging import get_logger

logger = get_logger(__name__)

Dim = Union[int, str, None]

# Execution provider choice is left to deployment; the service runs on CPU
DEFAULT_PROVIDERS = ("CPUExecutionProvider",)


class IInferenceEngine(ABC):
    """Interface for a loaded model executor."""

    @property
    @abstractmethod
    def input_names(self) -> List[str]:
        """Declared input names, in declaration order."""
        pass

    @property
    @abstractmethod
    def output_names(self) -> List[str]:
        """Declared output names, in declaration order."""
        pass

    @abstractmethod
    def input_shape(self, name: str) -> Sequence[Dim]:
        """
        Declared shape of an input.

        Static dimensions are ints; dynamic ones are None or a symbolic name.
        """
        pass

    @abstractmethod
    def run(self, feeds: Dict[str, np.ndarray], output_names: Optional[List[str]] = None) -> Dict[str, np.ndarray]:
        """
        Run one inference.

        Raises:
            InferenceEngineError: if the engine rejects the feeds or fails
        """
        pass


class OnnxInferenceEngine(IInferenceEngine):
    """ONNX Runtime backed executor."""

    def __init__(self, session: ort.InferenceSession, model_path: Path):
        self.session = session
        self.model_path = Path(model_path)
        self._inputs = {meta.name: meta for meta in session.get_inputs()}
        self._input_names = [meta.name for meta in session.get_inputs()]
        self._output_names = [meta.name for meta in session.get_outputs()]

    @classmethod
    def from_path(cls, model_path: Union[str, Path]) -> "OnnxInferenceEngine":
        """Create a session for a model file."""
        model_path = Path(model_path)
        try:
            options = ort.SessionOptions()
            options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
            options.intra_op_num_threads = max(1, os.cpu_count() or 1)
            session = ort.InferenceSession(
                str(model_path),
                sess_options=options,
                providers=list(DEFAULT_PROVIDERS),
            )
        except Exception as e:
            raise ModelLoadError(
                f"inference engine rejected model {model_path.name}: {e}",
                model_path=str(model_path)
            ) from e

        logger.info(
            "inference_session_created",
            model_file=model_path.name,
            providers=session.get_providers()
        )
        return cls(session, model_path)

    @property
    def input_names(self) -> List[str]:
        return list(self._input_names)

    @property
    def output_names(self) -> List[str]:
        return list(self._output_names)

    def input_shape(self, name: str) -> Sequence[Dim]:
        return list(self._inputs[name].shape)

    def run(self, feeds: Dict[str, np.ndarray], output_names: Optional[List[str]] = None) -> Dict[str, np.ndarray]:
        names = output_names or self._output_names
        try:
            outputs = self.session.run(names, feeds)
        except Exception as e:
            raise InferenceEngineError(f"inference failed: {e}", engine_error=str(e)) from e
        return dict(zip(names, outputs))
