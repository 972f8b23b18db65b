"""
Inference layer: model loading and single-flight forward passes.
"""

from .backend import InferenceBackend, ModelContract, RawOutput
from .engine import InferenceEngine, ModelHandle, create_backend, create_engine

__all__ = [
    "InferenceBackend",
    "ModelContract",
    "RawOutput",
    "InferenceEngine",
    "ModelHandle",
    "create_backend",
    "create_engine",
]
