"""
TorchScript inference backend.

Runs a YOLOv8-style detector exported with ``model.export(format="torchscript")``
(the same artifact format the pothole app ships to phones). CPU by default;
``cuda`` / ``mps`` devices make the backend report accelerated execution.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, List

import numpy as np

from models.errors import ModelLoadError


@dataclass(frozen=True)
class TorchScriptConfig:
    device: str = "cpu"
    num_threads: int = 0


class TorchScriptBackend:
    name = "torchscript"

    def __init__(self, cfg: TorchScriptConfig):
        self.cfg = cfg
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "PyTorch is not installed. Install with `pip install torch` "
                "or switch model.runtime to 'onnx'."
            ) from e

        self._torch = torch
        self._model = None
        self._device = None

    def supports_accelerated(self) -> bool:
        return self._device is not None and self._device.type in ("cuda", "mps")

    def _resolve_device(self):
        torch = self._torch
        device = torch.device(self.cfg.device)
        if device.type == "cuda" and not torch.cuda.is_available():
            raise ModelLoadError("model.device is 'cuda' but CUDA is not available")
        if device.type == "mps" and not torch.backends.mps.is_available():
            raise ModelLoadError("model.device is 'mps' but MPS is not available")
        return device

    def load(self, path: str) -> None:
        if not path or not os.path.isfile(path):
            raise ModelLoadError(f"Model artifact not found: {path!r}")

        device = self._resolve_device()
        if self.cfg.num_threads > 0:
            self._torch.set_num_threads(self.cfg.num_threads)
        try:
            model = self._torch.jit.load(path, map_location=device)
        except Exception as e:
            raise ModelLoadError(f"Failed to load TorchScript model {path}: {e}") from e

        model.eval()
        self._model = model
        self._device = device
        logging.info(f"TorchScript model loaded: path={path}, device={device}")

    def forward(self, batch: np.ndarray) -> List[np.ndarray]:
        if self._model is None:
            raise RuntimeError("TorchScript model is not loaded")
        torch = self._torch
        with torch.inference_mode():
            inp = torch.from_numpy(batch).to(self._device)
            out = self._model(inp)
        return [t.detach().cpu().numpy() for t in _flatten_outputs(out)]

    def close(self) -> None:
        self._model = None
        if self._device is not None and self._device.type == "cuda":
            self._torch.cuda.empty_cache()
        self._device = None


def _flatten_outputs(out: Any) -> List[Any]:
    """Flatten tensor / tuple / list / dict model outputs into a list of tensors."""
    if isinstance(out, (list, tuple)):
        flat: List[Any] = []
        for item in out:
            flat.extend(_flatten_outputs(item))
        return flat
    if isinstance(out, dict):
        flat = []
        for key in sorted(out):
            flat.extend(_flatten_outputs(out[key]))
        return flat
    return [out]
