"""
Inference backend interface.

A backend wraps one runtime (TorchScript, ONNX Runtime, ...) and knows how to
load an artifact and run a single forward pass on a (1, C, H, W) float32
array. It returns the model's raw output arrays untouched: decoding is the
Postprocessor's job.

Hardware acceleration is a capability a backend reports through
``supports_accelerated()``, not a subclass.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

import numpy as np

from models.config import ModelConfig

OUTPUT_LAYOUTS = ("yolov8", "yolov5")


@dataclass(frozen=True)
class ModelContract:
    """
    Declared input/output contract of a model artifact.

    Attributes:
        input_size: (width, height) the model expects.
        output_layout: "yolov8" -> (1, 4+nc, N); "yolov5" -> (1, N, 5+nc).
        labels: Class label table, indexed by class id.
    """
    input_size: Tuple[int, int] = (640, 640)
    output_layout: str = "yolov8"
    labels: Tuple[str, ...] = ("pothole",)

    def __post_init__(self):
        if self.output_layout not in OUTPUT_LAYOUTS:
            raise ValueError(f"output_layout must be one of {OUTPUT_LAYOUTS}, got {self.output_layout!r}")

    @property
    def num_classes(self) -> int:
        return len(self.labels)

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        """NCHW input shape."""
        w, h = self.input_size
        return (1, 3, h, w)

    def label(self, class_id: int) -> str:
        if 0 <= class_id < len(self.labels):
            return self.labels[class_id]
        return str(class_id)

    @classmethod
    def from_model_config(cls, cfg: ModelConfig) -> "ModelContract":
        return cls(
            input_size=tuple(cfg.input_size),
            output_layout=cfg.output_layout,
            labels=tuple(cfg.labels),
        )


@dataclass(frozen=True)
class RawOutput:
    """
    Unprocessed output of one forward pass.

    Attributes:
        outputs: Raw output arrays in model order (the first holds the boxes).
        frame_seq: Sequence id of the frame that produced the input tensor.
        latency_ms: Wall time of the forward pass.
    """
    outputs: Tuple[np.ndarray, ...]
    frame_seq: int
    latency_ms: float = 0.0

    @property
    def primary(self) -> np.ndarray:
        return self.outputs[0]


class InferenceBackend(Protocol):
    name: str

    def load(self, path: str) -> None:
        ...

    def forward(self, batch: np.ndarray) -> List[np.ndarray]:
        ...

    def supports_accelerated(self) -> bool:
        ...

    def close(self) -> None:
        ...


def describe_backend(backend: InferenceBackend) -> str:
    accel: Optional[bool]
    try:
        accel = backend.supports_accelerated()
    except Exception:
        accel = None
    return f"{getattr(backend, 'name', type(backend).__name__)} (accelerated={accel})"
