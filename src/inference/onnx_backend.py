"""
ONNX Runtime inference backend.

Execution providers are picked from the configured device; acceleration is
reported when the session actually runs on a non-CPU provider.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from models.errors import ModelLoadError

_PROVIDERS = {
    "cpu": ["CPUExecutionProvider"],
    "cuda": ["CUDAExecutionProvider", "CPUExecutionProvider"],
    "tensorrt": ["TensorrtExecutionProvider", "CUDAExecutionProvider", "CPUExecutionProvider"],
    "coreml": ["CoreMLExecutionProvider", "CPUExecutionProvider"],
}


@dataclass(frozen=True)
class OnnxConfig:
    device: str = "cpu"
    intra_op_threads: int = 0


class OnnxRuntimeBackend:
    name = "onnxruntime"

    def __init__(self, cfg: OnnxConfig):
        self.cfg = cfg
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is not installed. Install with `pip install onnxruntime` "
                "or switch model.runtime to 'torchscript'."
            ) from e

        self._ort = ort
        self._session = None
        self._input_name: Optional[str] = None

    def supports_accelerated(self) -> bool:
        if self._session is None:
            return False
        return any(p != "CPUExecutionProvider" for p in self._session.get_providers())

    def load(self, path: str) -> None:
        if not path or not os.path.isfile(path):
            raise ModelLoadError(f"Model artifact not found: {path!r}")

        wanted = _PROVIDERS.get(self.cfg.device)
        if wanted is None:
            raise ModelLoadError(f"Unsupported onnx device: {self.cfg.device}")
        providers = [p for p in wanted if p in self._ort.get_available_providers()]
        if not providers:
            raise ModelLoadError(f"No execution provider available for device {self.cfg.device}")

        options = self._ort.SessionOptions()
        if self.cfg.intra_op_threads > 0:
            options.intra_op_num_threads = self.cfg.intra_op_threads
        try:
            self._session = self._ort.InferenceSession(path, sess_options=options, providers=providers)
        except Exception as e:
            raise ModelLoadError(f"Failed to load ONNX model {path}: {e}") from e

        self._input_name = self._session.get_inputs()[0].name
        logging.info(f"ONNX model loaded: path={path}, providers={self._session.get_providers()}")

    def forward(self, batch: np.ndarray) -> List[np.ndarray]:
        if self._session is None:
            raise RuntimeError("ONNX session is not loaded")
        return list(self._session.run(None, {self._input_name: batch}))

    def close(self) -> None:
        self._session = None
        self._input_name = None
